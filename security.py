import hashlib
import logging
import secrets
import time
from collections import defaultdict, deque
from datetime import datetime, timedelta
from threading import Lock
from typing import Deque, Dict, Optional

import jwt
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from passlib.context import CryptContext

from config import settings
from database import db, to_object_id

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)
password_ctx = CryptContext(schemes=["bcrypt"], deprecated="auto")

STAFF_ROLES = ("admin", "inventory_manager")


def hash_password(password: str) -> str:
    return password_ctx.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    return password_ctx.verify(password, hashed)


def hash_code(code: str) -> str:
    return hashlib.sha256(code.encode()).hexdigest()


def generate_code(digits: int = 6) -> str:
    return "".join(secrets.choice("0123456789") for _ in range(digits))


def create_token(user: dict) -> str:
    payload = {
        "sub": str(user["_id"]),
        "email": user.get("email"),
        "role": user.get("role", "user"),
        "exp": datetime.utcnow() + timedelta(minutes=settings.JWT_EXPIRES_MIN),
        "iat": datetime.utcnow(),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm="HS256")


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


def public_user(user: dict) -> dict:
    hidden = {"hashed_password", "reset_password_token", "reset_password_expires"}
    out = {k: v for k, v in user.items() if k not in hidden and k != "_id"}
    out["id"] = str(user["_id"])
    return out


def user_from_token(token: str) -> dict:
    payload = decode_token(token)
    oid = to_object_id(payload.get("sub"))
    user = db["user"].find_one({"_id": oid}) if oid else None
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return user


def _request_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    if credentials and credentials.credentials:
        return credentials.credentials
    return request.cookies.get("token")


async def get_current_user(request: Request,
                           credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> dict:
    token = _request_token(request, credentials)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")
    user = user_from_token(token)
    if user.get("is_blocked"):
        raise HTTPException(status_code=403, detail="Account is blocked")
    now = datetime.utcnow()
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"last_active_at": now}})
    user["last_active_at"] = now
    return user


def require_roles(*roles: str):
    async def checker(user: dict = Depends(get_current_user)) -> dict:
        if user.get("role") not in roles:
            raise HTTPException(status_code=403, detail="Access denied")
        return user
    return checker


class RateLimiter:
    """Sliding-window limiter keyed by client address."""

    def __init__(self, max_requests: int, window_seconds: int, message: str):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.message = message
        self._hits: Dict[str, Deque[float]] = defaultdict(deque)
        self._lock = Lock()

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()

    def __call__(self, request: Request) -> None:
        key = request.client.host if request.client else "unknown"
        now = time.monotonic()
        with self._lock:
            hits = self._hits[key]
            while hits and now - hits[0] >= self.window_seconds:
                hits.popleft()
            if len(hits) >= self.max_requests:
                retry_after = int(self.window_seconds - (now - hits[0])) + 1
                logger.warning("Rate limit hit for %s on %s", key, request.url.path)
                raise HTTPException(status_code=429, detail={"message": self.message, "retry_after": retry_after})
            hits.append(now)


admin_create_user_limiter = RateLimiter(
    max_requests=5,
    window_seconds=15 * 60,
    message="Too many user creation attempts, please try again later",
)
