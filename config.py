from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    DATABASE_URL: str = "mongodb://localhost:27017"
    DATABASE_NAME: str = "best_wishes"
    # Multi-document transactions need a replica set
    USE_TRANSACTIONS: bool = True

    JWT_SECRET: str = "dev-secret-change-me"
    JWT_EXPIRES_MIN: int = 60 * 24 * 7

    FRONTEND_URL: str = "http://localhost:3000"
    CORS_ORIGINS: List[str] = ["*"]

    EMAIL: str = ""
    EMAIL_APP_PASSWORD: str = ""
    SMTP_HOST: str = "smtp.gmail.com"
    SMTP_PORT: int = 587

    STRIPE_SECRET_KEY: str = ""

    MEDIA_ROOT: str = "media"
    MEDIA_URL: str = "/media"
    MAX_UPLOAD_BYTES: int = 5 * 1024 * 1024

    SCHEDULER_ENABLED: bool = True
    SCHEDULER_INTERVAL_SECONDS: int = 60

    LOG_LEVEL: str = "INFO"


settings = Settings()
