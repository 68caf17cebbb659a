import os

# configuration is read at import time, so it has to be in place first
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AUTH_TOKEN_SECRET"] = "test_secret"
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("BUSINESS_TIMEZONE", "UTC")

import httpx
import pytest
import pytest_asyncio
from fakeredis import aioredis

from recovery_api.db import Base, engine
from recovery_api.deps import get_gateway, get_redis
from recovery_api.main import app
from tests.helpers import FakeGateway


@pytest.fixture(autouse=True)
def clean_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest_asyncio.fixture(scope="function")
async def redis():
    r = aioredis.FakeRedis(decode_responses=True)
    try:
        await r.flushall()
        yield r
    finally:
        await r.flushall()
        await r.aclose()


@pytest_asyncio.fixture(scope="function")
async def client(gateway, redis):
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_redis] = lambda: redis
    transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
    try:
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver", timeout=10.0) as c:
            yield c
    finally:
        app.dependency_overrides.clear()
