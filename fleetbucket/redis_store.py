"""Redis-backed implementation of the shared bucket store."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional

import redis

from .config import RedisSettings
from .store import BucketStore, StoreCommunicationError


class RedisBucketStore(BucketStore):
    """Bucket store that maps each contract command onto one Redis command.

    Blocking pops are polled with RPOP and ``asyncio.sleep`` rather than sent as
    BRPOP, so waiting consumers never hold a worker thread that the refill loop
    needs for its own commands.
    """

    def __init__(
        self,
        *,
        socket_path: Optional[str] = None,
        url: Optional[str] = None,
        namespace: str = "",
        socket_timeout: Optional[float] = None,
        client: Optional[redis.Redis] = None,
        poll_interval: float = 0.05,
    ) -> None:
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        if client is None:
            if socket_path:
                client = redis.Redis(
                    unix_socket_path=socket_path,
                    socket_timeout=socket_timeout,
                    decode_responses=True,
                )
            elif url:
                client = redis.Redis.from_url(url, socket_timeout=socket_timeout, decode_responses=True)
            else:
                raise ValueError("either socket_path, url or client is required")
        self._client = client
        self._namespace = namespace
        self._poll_interval = poll_interval
        self._compare_and_set_script = self._client.register_script(
            """
            if redis.call('GET', KEYS[1]) == ARGV[1] then
              redis.call('SET', KEYS[1], ARGV[2])
              return 1
            end
            return 0
            """
        )
        self._compare_and_delete_script = self._client.register_script(
            """
            if redis.call('GET', KEYS[1]) == ARGV[1] then
              return redis.call('DEL', KEYS[1])
            end
            return 0
            """
        )

    @classmethod
    def from_settings(cls, settings: RedisSettings) -> "RedisBucketStore":
        return cls(
            socket_path=settings.socket_path,
            url=settings.url,
            namespace=settings.namespace,
            socket_timeout=settings.socket_timeout,
            poll_interval=settings.poll_interval,
        )

    def _key(self, key: str) -> str:
        if not self._namespace:
            return key
        return f"{self._namespace}:{key}"

    async def _call(self, command: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        def _invoke() -> Any:
            try:
                return fn(*args, **kwargs)
            except redis.RedisError as exc:
                raise StoreCommunicationError(f"redis {command} failed: {exc}") from exc

        return await asyncio.to_thread(_invoke)

    @staticmethod
    def _text(value: Any) -> str | None:
        # clients built without decode_responses hand back bytes
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def set_if_absent(self, key: str, value: str) -> bool:
        return bool(await self._call("SETNX", self._client.setnx, self._key(key), value))

    async def get(self, key: str) -> str | None:
        return self._text(await self._call("GET", self._client.get, self._key(key)))

    async def swap_and_return_previous(self, key: str, value: str) -> str | None:
        return self._text(await self._call("GETSET", self._client.getset, self._key(key), value))

    async def set(self, key: str, value: str) -> None:
        await self._call("SET", self._client.set, self._key(key), value)

    async def compare_and_set(self, key: str, expected: str, value: str) -> bool:
        swapped = await self._call(
            "EVALSHA",
            self._compare_and_set_script,
            keys=[self._key(key)],
            args=[expected, value],
        )
        return swapped == 1

    async def compare_and_delete(self, key: str, expected: str) -> bool:
        deleted = await self._call(
            "EVALSHA",
            self._compare_and_delete_script,
            keys=[self._key(key)],
            args=[expected],
        )
        return deleted == 1

    async def length(self, list_key: str) -> int:
        return int(await self._call("LLEN", self._client.llen, self._key(list_key)))

    async def push_front(self, list_key: str, placeholder: str) -> None:
        await self._call("LPUSH", self._client.lpush, self._key(list_key), placeholder)

    async def pop_back(self, list_key: str) -> str | None:
        return self._text(await self._call("RPOP", self._client.rpop, self._key(list_key)))

    async def blocking_pop_back(self, list_key: str, timeout: float | None = None) -> str | None:
        """Poll RPOP until a token arrives; ``None`` or ``0`` waits forever."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout if timeout else None
        while True:
            placeholder = await self.pop_back(list_key)
            if placeholder is not None:
                return placeholder
            delay = self._poll_interval
            if deadline is not None:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    return None
                delay = min(delay, remaining)
            await asyncio.sleep(delay)

    def close(self) -> None:
        try:
            self._client.close()
        except redis.RedisError:
            pass
