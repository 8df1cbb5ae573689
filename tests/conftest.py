import httpx
import pytest
import pytest_asyncio

from factories import FakeWebhookServer
from shelfwatch.models.db import Database


@pytest.fixture
def webhook_server():
    return FakeWebhookServer()


@pytest_asyncio.fixture
async def http_client(webhook_server):
    async with httpx.AsyncClient(transport=httpx.MockTransport(webhook_server.handler)) as client:
        yield client


@pytest_asyncio.fixture
async def database():
    db = Database("sqlite+aiosqlite:///:memory:").open()
    await db.create_all()
    yield db
    await db.close()


@pytest_asyncio.fixture
async def session(database):
    async with database.session() as s:
        yield s
