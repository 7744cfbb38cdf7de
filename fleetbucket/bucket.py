"""Public handle of a token bucket shared by many processes."""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Callable

import structlog
from pydantic import BaseModel, ConfigDict, Field

from .config import Settings
from .fault import FaultCell
from .lease import LeaseManager, LeaseState
from .refill import LoopState, RefillLoop
from .store import BucketError, BucketStore
from .token_queue import TokenQueue

logger = structlog.get_logger(__name__)

# shortest blocking pop handed to the store; some stores read 0 as "forever"
MIN_POP_SLICE = 0.01


class TokenTimeoutError(BucketError, TimeoutError):
    """Raised when no token arrived before the caller's deadline."""


class BucketConfig(BaseModel):
    """Immutable bucket configuration."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1, description="Bucket identifier, also the queue key")
    capacity: int = Field(gt=0, description="Maximum resident tokens")
    cadence: float = Field(gt=0, description="Refill interval in seconds")
    fencing: bool = Field(default=True, description="Tag leases with an owner token")
    poll_interval: float = Field(default=0.5, gt=0, description="Longest single blocking pop in seconds")

    @property
    def lock_key(self) -> str:
        return f"{self.name}_lock"

    @property
    def queue_key(self) -> str:
        return self.name

    @property
    def lease_duration(self) -> float:
        return 2 * self.cadence


@dataclass(frozen=True)
class BucketStats:
    name: str
    capacity: int
    tokens: int
    lease: LeaseState
    loop_state: LoopState
    fault_version: int


class Bucket:
    """Token bucket whose tokens and filler lease live in a shared store.

    Any process may consume tokens; the process holding the lease refills
    the queue once per cadence. Use as an async context manager, or call
    :meth:`start` and :meth:`stop` explicitly.
    """

    def __init__(
        self,
        config: BucketConfig,
        store: BucketStore,
        *,
        owner_id: str | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self._store = store
        self._queue = TokenQueue(store, config.queue_key)
        self._faults = FaultCell()
        self._lease = LeaseManager(
            store,
            config.lock_key,
            config.lease_duration,
            fencing=config.fencing,
            owner_id=owner_id,
            clock=clock,
        )
        self._refill = RefillLoop(
            lease=self._lease,
            queue=self._queue,
            capacity=config.capacity,
            cadence=config.cadence,
            faults=self._faults,
            name=config.name,
        )

    @classmethod
    def from_settings(
        cls,
        name: str,
        store: BucketStore,
        settings: Settings,
        **overrides: Any,
    ) -> "Bucket":
        options = settings.bucket.model_dump()
        options.update(overrides)
        return cls(BucketConfig(name=name, **options), store)

    @property
    def config(self) -> BucketConfig:
        return self._config

    @property
    def name(self) -> str:
        return self._config.name

    @property
    def faults(self) -> FaultCell:
        return self._faults

    @property
    def lease(self) -> LeaseManager:
        return self._lease

    @property
    def refill_loop(self) -> RefillLoop:
        return self._refill

    def start(self) -> None:
        """Start the refill loop; a restart after a fault clears the fault."""
        if self._refill.running:
            return
        self._faults.clear()
        self._refill.start()

    async def stop(self) -> None:
        await self._refill.stop()

    async def __aenter__(self) -> "Bucket":
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    def _raise_fault(self) -> None:
        fault = self._faults.current()
        if fault is not None:
            raise fault

    async def acquire_token(self, timeout: float | None = None) -> None:
        """Take one token, waiting up to ``timeout`` seconds (forever if ``None``).

        A fault posted by the refill loop is raised as-is to every caller that
        checks while it stands, before the queue is touched and between pop
        slices of callers already waiting.
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while True:
            self._raise_fault()
            wait = self._config.poll_interval
            if deadline is not None:
                wait = max(min(wait, deadline - loop.time()), MIN_POP_SLICE)
            if await self._queue.blocking_pop(wait) is not None:
                return
            if deadline is not None and loop.time() >= deadline:
                raise TokenTimeoutError(f"no token from bucket {self.name!r} within {timeout}s")

    async def try_acquire_token(self) -> bool:
        """Take one token if one is available right now."""
        self._raise_fault()
        return await self._queue.pop() is not None

    @asynccontextmanager
    async def reserve(self, cost: int = 1, timeout: float | None = None):
        """Acquire ``cost`` tokens before entering; tokens are consumed, not returned."""
        if cost <= 0:
            raise ValueError("cost must be positive")
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        for _ in range(cost):
            remaining = None if deadline is None else max(deadline - loop.time(), 0.0)
            await self.acquire_token(timeout=remaining)
        yield

    async def stats(self) -> BucketStats:
        return BucketStats(
            name=self.name,
            capacity=self._config.capacity,
            tokens=await self._queue.length(),
            lease=await self._lease.inspect(),
            loop_state=self._refill.state,
            fault_version=self._faults.version,
        )


def new_bucket(
    name: str,
    capacity: int,
    cadence: float,
    store: BucketStore,
    **options: Any,
) -> Bucket:
    """Build a bucket and start its refill loop; needs a running event loop."""
    owner_id = options.pop("owner_id", None)
    clock = options.pop("clock", time.time)
    config = BucketConfig(name=name, capacity=capacity, cadence=cadence, **options)
    bucket = Bucket(config, store, owner_id=owner_id, clock=clock)
    bucket.start()
    logger.debug("bucket_created", bucket=name, capacity=capacity, cadence=cadence)
    return bucket
