import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

import scheduler
from config import settings
from database import db, ensure_indexes
from errors import register_error_handlers
from media import media_root
from routers import (
    admin_users, auth, categories, chatbot, collaborative, customizations, delivery, email, events, feedback,
    gift_contributions, hero_sections, notifications, order_summaries, orders, payments, products, reminders,
    surprise_gifts, uploads,
)

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("best_wishes")


@asynccontextmanager
async def lifespan(app: FastAPI):
    ensure_indexes()
    task = None
    if settings.SCHEDULER_ENABLED:
        task = asyncio.create_task(scheduler.run_forever())
    yield
    if task is not None:
        task.cancel()


# App setup
app = FastAPI(title="Best Wishes API", version="1.0.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_error_handlers(app)

for module in (auth, admin_users, categories, products, orders, delivery, surprise_gifts, collaborative,
               gift_contributions, notifications, feedback, customizations, order_summaries, events, reminders,
               chatbot, payments, uploads, hero_sections, email):
    app.include_router(module.router)

app.mount(settings.MEDIA_URL, StaticFiles(directory=str(media_root())), name="media")


# Health
@app.get("/")
def root():
    return {"message": "Best Wishes API running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if settings.DATABASE_URL else "❌ Not Set",
        "database_name": "✅ Set" if settings.DATABASE_NAME else "❌ Not Set",
        "email": "✅ Set" if settings.EMAIL else "❌ Not Set",
        "stripe": "✅ Set" if settings.STRIPE_SECRET_KEY else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        db.command("ping")
        response["database"] = "✅ Connected & Working"
        response["connection_status"] = "Connected"
        response["collections"] = db.list_collection_names()[:10]
    except Exception as e:
        logger.warning("Database check failed: %s", e)
        response["database"] = f"⚠️ Connected but error: {str(e)[:80]}"
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)
