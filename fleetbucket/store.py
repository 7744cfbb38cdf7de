"""Shared key-value store contract used by the distributed token bucket."""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Protocol


class BucketError(Exception):
    """Base class for token bucket failures."""


class StoreCommunicationError(BucketError):
    """Raised when any operation against the shared store fails."""


class BucketStore(Protocol):
    """Atomic single-key commands plus a blocking list pop.

    Every method is one atomic store command. Multi-command sequences built on
    top of this contract are not atomic as a whole. A ``blocking_pop_back``
    timeout of ``None`` or ``0`` waits forever.
    """

    async def set_if_absent(self, key: str, value: str) -> bool:
        ...

    async def get(self, key: str) -> str | None:
        ...

    async def swap_and_return_previous(self, key: str, value: str) -> str | None:
        ...

    async def set(self, key: str, value: str) -> None:
        ...

    async def compare_and_set(self, key: str, expected: str, value: str) -> bool:
        ...

    async def compare_and_delete(self, key: str, expected: str) -> bool:
        ...

    async def length(self, list_key: str) -> int:
        ...

    async def push_front(self, list_key: str, placeholder: str) -> None:
        ...

    async def pop_back(self, list_key: str) -> str | None:
        ...

    async def blocking_pop_back(self, list_key: str, timeout: float | None = None) -> str | None:
        ...


class InMemoryBucketStore(BucketStore):
    """Store suitable for tests and single-process runs.

    Several buckets (standing in for several processes) may share one instance.
    """

    def __init__(self) -> None:
        self._values: dict[str, str] = {}
        self._lists: dict[str, deque[str]] = {}
        self._condition = asyncio.Condition()

    async def set_if_absent(self, key: str, value: str) -> bool:
        async with self._condition:
            if key in self._values:
                return False
            self._values[key] = value
            return True

    async def get(self, key: str) -> str | None:
        async with self._condition:
            return self._values.get(key)

    async def swap_and_return_previous(self, key: str, value: str) -> str | None:
        async with self._condition:
            previous = self._values.get(key)
            self._values[key] = value
            return previous

    async def set(self, key: str, value: str) -> None:
        async with self._condition:
            self._values[key] = value

    async def compare_and_set(self, key: str, expected: str, value: str) -> bool:
        async with self._condition:
            if self._values.get(key) != expected:
                return False
            self._values[key] = value
            return True

    async def compare_and_delete(self, key: str, expected: str) -> bool:
        async with self._condition:
            if self._values.get(key) != expected:
                return False
            del self._values[key]
            return True

    async def length(self, list_key: str) -> int:
        async with self._condition:
            return len(self._lists.get(list_key, ()))

    async def push_front(self, list_key: str, placeholder: str) -> None:
        async with self._condition:
            self._lists.setdefault(list_key, deque()).appendleft(placeholder)
            self._condition.notify_all()

    async def pop_back(self, list_key: str) -> str | None:
        async with self._condition:
            return self._pop_locked(list_key)

    async def blocking_pop_back(self, list_key: str, timeout: float | None = None) -> str | None:
        async with self._condition:
            try:
                await asyncio.wait_for(
                    self._condition.wait_for(lambda: bool(self._lists.get(list_key))),
                    timeout=timeout or None,
                )
            except asyncio.TimeoutError:
                return None
            return self._pop_locked(list_key)

    def _pop_locked(self, list_key: str) -> str | None:
        items = self._lists.get(list_key)
        if not items:
            return None
        return items.pop()
