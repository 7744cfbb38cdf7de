from typing import Iterable

import pytest

from fleetbucket.store import InMemoryBucketStore, StoreCommunicationError


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FlakyStore(InMemoryBucketStore):
    """In-memory store that fails the commands named in ``fail_on``."""

    def __init__(self, fail_on: Iterable[str] = ()) -> None:
        super().__init__()
        self.fail_on = set(fail_on)
        self.calls: list[str] = []

    def _check(self, command: str) -> None:
        self.calls.append(command)
        if command in self.fail_on:
            raise StoreCommunicationError(f"{command}: connection refused")

    async def set_if_absent(self, key, value):
        self._check("set_if_absent")
        return await super().set_if_absent(key, value)

    async def get(self, key):
        self._check("get")
        return await super().get(key)

    async def swap_and_return_previous(self, key, value):
        self._check("swap_and_return_previous")
        return await super().swap_and_return_previous(key, value)

    async def set(self, key, value):
        self._check("set")
        return await super().set(key, value)

    async def compare_and_set(self, key, expected, value):
        self._check("compare_and_set")
        return await super().compare_and_set(key, expected, value)

    async def length(self, list_key):
        self._check("length")
        return await super().length(list_key)

    async def push_front(self, list_key, placeholder):
        self._check("push_front")
        return await super().push_front(list_key, placeholder)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryBucketStore()


@pytest.fixture
def flaky_store():
    return FlakyStore()
