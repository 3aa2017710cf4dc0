"""Test fixtures — fresh tables per test, fake webhook receivers, wired services."""

import os
from collections.abc import AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Force SQLite test database *before* any app import
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test_webhooks.db"

from app.database import Base, async_session, engine  # noqa: E402
from app.main import app  # noqa: E402
from app.models import Business  # noqa: E402
from app.services.webhook_dispatcher import WebhookDispatcher  # noqa: E402
from app.services.webhook_recorder import DeliveryRecorder  # noqa: E402
from app.services.webhook_registry import EndpointRegistry  # noqa: E402


class Receiver:
    """Scripted stand-in for business-owned endpoints.

    Each URL gets a script of status codes or exceptions; the last entry
    repeats once the script runs out. Unscripted URLs answer 200.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.scripts: dict[str, list] = {}

    def respond(self, url: str, *responses) -> None:
        self.scripts[url] = list(responses)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        script = self.scripts.get(str(request.url), [200])
        item = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(item, Exception):
            raise item
        return httpx.Response(item, text="ok" if 200 <= item < 300 else f"error {item}")

    def requests_to(self, url: str) -> list[httpx.Request]:
        return [r for r in self.requests if str(r.url) == url]


@pytest_asyncio.fixture(autouse=True)
async def _setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def receiver() -> Receiver:
    return Receiver()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest_asyncio.fixture
async def http_client(receiver) -> AsyncGenerator[httpx.AsyncClient, None]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(receiver.handler)) as c:
        yield c


@pytest.fixture
def registry() -> EndpointRegistry:
    return EndpointRegistry(async_session)


@pytest.fixture
def recorder() -> DeliveryRecorder:
    return DeliveryRecorder(async_session)


@pytest_asyncio.fixture
async def dispatcher(registry, recorder, http_client, sleeps) -> AsyncGenerator[WebhookDispatcher, None]:
    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    d = WebhookDispatcher(registry, recorder, http_client, sleep=fake_sleep)
    yield d
    await d.drain()


@pytest_asyncio.fixture
async def business() -> Business:
    async with async_session() as db:
        biz = Business(name="Jane's Salon")
        db.add(biz)
        await db.commit()
        await db.refresh(biz)
    return biz


@pytest_asyncio.fixture
async def client(registry, recorder, dispatcher) -> AsyncGenerator[AsyncClient, None]:
    app.state.registry = registry
    app.state.recorder = recorder
    app.state.dispatcher = dispatcher
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
