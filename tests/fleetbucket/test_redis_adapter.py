import asyncio
import threading
import time
from collections import deque

import pytest

pytest.importorskip("redis")

from fleetbucket.bucket import Bucket, BucketConfig
from fleetbucket.lease import LeaseManager
from fleetbucket.redis_store import RedisBucketStore
from fleetbucket.refill import LoopState


class ThreadedFakeRedis:
    """Minimal synchronous stand-in for ``redis.Redis``.

    ``brpop`` parks the calling thread for its whole timeout, like a socket
    read on a real server.
    """

    def __init__(self, *, decode_responses: bool = True) -> None:
        self._lock = threading.Lock()
        self._values: dict[str, str] = {}
        self._lists: dict[str, deque[str]] = {}
        self._decode = decode_responses
        self.brpop_calls = 0
        self.closed = False

    def _reply(self, value):
        if value is None or self._decode:
            return value
        return value.encode("utf-8")

    def setnx(self, key, value):
        with self._lock:
            if key in self._values:
                return False
            self._values[key] = str(value)
            return True

    def get(self, key):
        with self._lock:
            return self._reply(self._values.get(key))

    def getset(self, key, value):
        with self._lock:
            previous = self._values.get(key)
            self._values[key] = str(value)
            return self._reply(previous)

    def set(self, key, value):
        with self._lock:
            self._values[key] = str(value)
            return True

    def llen(self, key):
        with self._lock:
            return len(self._lists.get(key, ()))

    def lpush(self, key, value):
        with self._lock:
            items = self._lists.setdefault(key, deque())
            items.appendleft(str(value))
            return len(items)

    def rpop(self, key):
        with self._lock:
            items = self._lists.get(key)
            return self._reply(items.pop() if items else None)

    def brpop(self, keys, timeout=0):
        self.brpop_calls += 1
        time.sleep(timeout or 1.0)
        return None

    def register_script(self, script):
        if "DEL" in script:
            return self._compare_and_delete
        return self._compare_and_set

    def _compare_and_set(self, keys, args):
        with self._lock:
            if self._values.get(keys[0]) != args[0]:
                return 0
            self._values[keys[0]] = args[1]
            return 1

    def _compare_and_delete(self, keys, args):
        with self._lock:
            if self._values.get(keys[0]) != args[0]:
                return 0
            del self._values[keys[0]]
            return 1

    def close(self):
        self.closed = True


@pytest.mark.asyncio
async def test_waiting_consumers_do_not_starve_the_filler():
    client = ThreadedFakeRedis()
    store = RedisBucketStore(client=client, poll_interval=0.02)
    bucket = Bucket(BucketConfig(name="jobs", capacity=1000, cadence=0.05, poll_interval=0.5), store)
    served = 0

    async def consume():
        nonlocal served
        while True:
            await bucket.acquire_token()
            served += 1

    consumers = [asyncio.create_task(consume()) for _ in range(64)]
    bucket.start()
    await asyncio.sleep(1.5)
    state = bucket.refill_loop.state

    for consumer in consumers:
        consumer.cancel()
    await asyncio.gather(*consumers, return_exceptions=True)
    await bucket.stop()

    assert state is LoopState.ACTIVE
    assert served >= 10
    assert client.brpop_calls == 0


@pytest.mark.asyncio
async def test_blocking_pop_waits_for_push_and_honours_timeout():
    store = RedisBucketStore(client=ThreadedFakeRedis(), poll_interval=0.01)

    assert await store.blocking_pop_back("jobs", timeout=0.05) is None

    waiter = asyncio.create_task(store.blocking_pop_back("jobs"))
    await asyncio.sleep(0.03)
    assert not waiter.done()
    await store.push_front("jobs", "1")

    assert await asyncio.wait_for(waiter, timeout=1.0) == "1"


@pytest.mark.asyncio
async def test_zero_timeout_pops_available_token():
    store = RedisBucketStore(client=ThreadedFakeRedis(), poll_interval=0.01)
    await store.push_front("jobs", "1")

    assert await store.blocking_pop_back("jobs", timeout=0) == "1"


@pytest.mark.asyncio
async def test_bytes_replies_are_decoded():
    client = ThreadedFakeRedis(decode_responses=False)
    store = RedisBucketStore(client=client, namespace="staging")

    lease = LeaseManager(store, "jobs_lock", 2.0, owner_id="a")
    assert await lease.try_acquire_or_takeover() is not None
    assert isinstance(await store.get("jobs_lock"), str)
    assert (await lease.inspect()).held_by_me
    assert await lease.renew()

    await store.push_front("jobs", "1")
    assert await store.pop_back("jobs") == "1"
    assert await store.swap_and_return_previous("other", "x") is None
    assert await store.swap_and_return_previous("other", "y") == "x"

    store.close()
    assert client.closed


def test_rejects_non_positive_poll_interval():
    with pytest.raises(ValueError):
        RedisBucketStore(client=ThreadedFakeRedis(), poll_interval=0)
