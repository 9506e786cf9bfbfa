import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from connection_logs.config import settings
from connection_logs.database import build_engine
from connection_logs.routers import connections, events
from connection_logs.services.connection_store import ConnectionStore
from connection_logs.services.event_recorder import EventRecorder
from connection_logs.services.telegram_service import NotificationDispatcher

logging.basicConfig(level=logging.INFO)
# httpx logs request URLs, which carry the bot token
logging.getLogger("httpx").setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    store = ConnectionStore(
        build_engine(settings.sqlalchemy_url),
        reprobe_interval=settings.store_reprobe_interval,
    )
    if not await store.probe():
        logger.error("Database unavailable, connections will not be recorded")
    if not settings.notifications_enabled:
        logger.warning("Telegram not configured, notifications disabled")
    async with httpx.AsyncClient() as http_client:
        dispatcher = NotificationDispatcher(
            http_client,
            settings.telegram_bot_token,
            settings.telegram_chat_id,
            base_url=settings.telegram_api_base_url,
            timeout=settings.notify_timeout,
            max_in_flight=settings.notify_max_in_flight,
            max_pending=settings.notify_max_pending,
        )
        app.state.http_client = http_client
        app.state.store = store
        app.state.dispatcher = dispatcher
        app.state.recorder = EventRecorder(store, dispatcher)
        try:
            yield
        finally:
            await dispatcher.aclose()
            await store.dispose()


app = FastAPI(title="Connection Logs", lifespan=lifespan)

app.include_router(events.router, prefix="/api")
app.include_router(connections.router, prefix="/api")


@app.get("/api/health")
async def health() -> dict:
    return {
        "store_available": app.state.store.available,
        "notifications_enabled": app.state.dispatcher.enabled,
    }
