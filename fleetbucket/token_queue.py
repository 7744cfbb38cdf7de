"""Thin client for the shared list that holds a bucket's tokens."""

from __future__ import annotations

from .store import BucketStore

TOKEN = "1"


class TokenQueue:
    """Tokens are opaque placeholders: pushed at the head, popped from the tail."""

    def __init__(self, store: BucketStore, key: str) -> None:
        self._store = store
        self._key = key

    @property
    def key(self) -> str:
        return self._key

    async def length(self) -> int:
        return await self._store.length(self._key)

    async def push(self, placeholder: str = TOKEN) -> None:
        await self._store.push_front(self._key, placeholder)

    async def pop(self) -> str | None:
        return await self._store.pop_back(self._key)

    async def blocking_pop(self, timeout: float | None = None) -> str | None:
        """Wait for a token; ``None`` means the timeout elapsed first."""
        return await self._store.blocking_pop_back(self._key, timeout)
