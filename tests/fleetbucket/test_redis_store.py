import asyncio
import os
import uuid
from pathlib import Path

import pytest

pytest.importorskip("redis")

from fleetbucket.bucket import BucketConfig, Bucket
from fleetbucket.lease import LeaseManager
from fleetbucket.redis_store import RedisBucketStore
from fleetbucket.store import StoreCommunicationError


REDIS_SOCKET = Path("/run/redis/redis-server.sock")
REDIS_URL = os.getenv("FLEETBUCKET_TEST_REDIS_URL")


pytestmark = pytest.mark.skipif(
    not REDIS_SOCKET.exists() and not REDIS_URL,
    reason="Redis UNIX socket not available",
)


@pytest.fixture
def redis_store():
    namespace = f"test:fleetbucket:{uuid.uuid4().hex}"
    if REDIS_SOCKET.exists():
        store = RedisBucketStore(socket_path=str(REDIS_SOCKET), namespace=namespace)
    else:
        store = RedisBucketStore(url=REDIS_URL, namespace=namespace)
    yield store
    store.close()


@pytest.mark.asyncio
async def test_redis_key_commands(redis_store):
    assert await redis_store.set_if_absent("jobs_lock", "a")
    assert not await redis_store.set_if_absent("jobs_lock", "b")
    assert await redis_store.get("jobs_lock") == "a"
    assert await redis_store.swap_and_return_previous("jobs_lock", "c") == "a"
    assert not await redis_store.compare_and_set("jobs_lock", "a", "d")
    assert await redis_store.compare_and_set("jobs_lock", "c", "d")
    await redis_store.set("jobs_lock", "e")
    assert await redis_store.compare_and_delete("jobs_lock", "e")
    assert await redis_store.get("jobs_lock") is None


@pytest.mark.asyncio
async def test_redis_list_commands(redis_store):
    await redis_store.push_front("jobs", "1")
    await redis_store.push_front("jobs", "2")

    assert await redis_store.length("jobs") == 2
    assert await redis_store.blocking_pop_back("jobs", timeout=0.1) == "1"
    assert await redis_store.pop_back("jobs") == "2"
    assert await redis_store.blocking_pop_back("jobs", timeout=0.1) is None


@pytest.mark.asyncio
async def test_redis_single_winner_for_lease(redis_store):
    leases = [LeaseManager(redis_store, "jobs_lock", 2.0, owner_id=f"p{i}") for i in range(5)]

    results = await asyncio.gather(*(lease.try_acquire_or_takeover() for lease in leases))

    assert sum(result is not None for result in results) == 1


@pytest.mark.asyncio
async def test_redis_bucket_round_trip(redis_store):
    async with Bucket(BucketConfig(name="jobs", capacity=2, cadence=0.1, poll_interval=0.1), redis_store) as bucket:
        await asyncio.wait_for(bucket.acquire_token(), timeout=2.0)
        await asyncio.wait_for(bucket.acquire_token(), timeout=2.0)


@pytest.mark.asyncio
async def test_unreachable_redis_raises_store_error(tmp_path):
    store = RedisBucketStore(socket_path=str(tmp_path / "missing.sock"))

    with pytest.raises(StoreCommunicationError):
        await store.length("jobs")
    store.close()
