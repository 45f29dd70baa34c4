import fakeredis.aioredis
import httpx
import pytest

from db.database import get_kv
from db.kv import KVStore
from main import app
from routers.deps import session_registry
from utils.limiter import limiter

# 2024-05-01T10:00:00Z
FIXED_NOW = 1714557600000


class FakeClock:
    """Callable epoch-ms clock that tests can move by hand"""

    def __init__(self, now: int = FIXED_NOW):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def redis_client():
    return fakeredis.aioredis.FakeRedis(decode_responses=True)


@pytest.fixture
def kv(redis_client):
    return KVStore(redis_client)


@pytest.fixture
async def client(kv):
    limiter.enabled = False
    app.dependency_overrides[get_kv] = lambda: kv
    session_registry.clear()
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c
    app.dependency_overrides.clear()
    session_registry.clear()
    limiter.enabled = True
