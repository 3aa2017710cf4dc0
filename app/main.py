"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api import businesses, webhooks
from app.config import get_settings
from app.services.webhook_dispatcher import WebhookDispatcher
from app.services.webhook_recorder import DeliveryRecorder
from app.services.webhook_registry import EndpointRegistry

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def build_http_client() -> httpx.AsyncClient:
    """Shared outbound client, pool sized from settings."""
    limits = httpx.Limits(
        max_connections=settings.webhook_max_connections,
        max_keepalive_connections=settings.webhook_max_keepalive_connections,
    )
    return httpx.AsyncClient(limits=limits, follow_redirects=False)


def build_services(app: FastAPI, client: httpx.AsyncClient) -> WebhookDispatcher:
    """Attach registry, recorder and dispatcher to ``app.state``."""
    from app.database import async_session

    registry = EndpointRegistry(
        async_session,
        keep_deliveries_on_delete=settings.webhook_keep_deliveries_on_delete,
    )
    recorder = DeliveryRecorder(async_session, response_limit=settings.webhook_response_limit)
    dispatcher = WebhookDispatcher.from_settings(settings, registry, recorder, client)
    app.state.registry = registry
    app.state.recorder = recorder
    app.state.dispatcher = dispatcher
    return dispatcher


@asynccontextmanager
async def lifespan(app: FastAPI):
    from app.database import create_tables

    await create_tables()
    async with build_http_client() as client:
        dispatcher = build_services(app, client)
        yield
        # let in-flight retry sequences finish before the client closes
        if dispatcher.pending:
            logger.info(f"Waiting for {dispatcher.pending} webhook deliveries to finish")
        await dispatcher.drain()


app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    description="Signed outbound webhooks for bookings, orders and conversations",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(businesses.router, prefix="/api/v1")
app.include_router(webhooks.router, prefix="/api/v1")
app.include_router(webhooks.endpoints_router, prefix="/api/v1")


@app.get("/health")
async def health():
    return {"status": "ok", "app": settings.app_name}
