import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis

from citychat.domain.chat import repo as message_repo
from citychat.domain.profiles import service as profile_service
from citychat.domain.rooms import service as room_service
from citychat.domain.social import service as social_service
from citychat.infra import postgres
from citychat.infra.realtime import MemoryLiveFeed, set_feed
from citychat.settings import settings


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
    from citychat.infra.redis import redis_client, set_redis_client
    original = redis_client.client
    client = FakeRedis(decode_responses=True)
    set_redis_client(client)
    try:
        yield client
    finally:
        set_redis_client(original)
        await client.flushall()


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
    async def _unreachable():
        raise ConnectionRefusedError("no database in tests")

    async def _noop():
        return None

    # Repositories use their in-memory stores; a test that turns this off
    # sees the database as unreachable.
    monkeypatch.setattr(settings, "use_memory_store", True)
    monkeypatch.setattr(postgres, "init_pool", _unreachable)
    monkeypatch.setattr(postgres, "close_pool", _noop)


@pytest_asyncio.fixture(autouse=True)
async def reset_stores():
    await profile_service.reset_memory_state()
    await room_service.reset_memory_state()
    await social_service.reset_memory_state()
    await message_repo.reset_memory_state()
    feed = MemoryLiveFeed()
    set_feed(feed)
    try:
        yield feed
    finally:
        set_feed(None)


@pytest.fixture
def live_feed(reset_stores):
    return reset_stores
