"""Lease-based election of the single process that refills a bucket."""

from __future__ import annotations

import socket
import time
import uuid
from dataclasses import dataclass
from typing import Callable

import structlog

from .store import BucketStore

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class LeaseValue:
    """Expiry timestamp stored under the lock key, optionally tagged with its owner."""

    expiry: float
    owner: str | None = None

    def encode(self) -> str:
        if self.owner is None:
            return f"{self.expiry:.6f}"
        return f"{self.expiry:.6f}:{self.owner}"

    @classmethod
    def decode(cls, raw: str | None) -> "LeaseValue | None":
        """Parse a stored lease; garbage decodes as an already expired lease."""
        if raw is None:
            return None
        expiry, _, owner = raw.partition(":")
        try:
            return cls(expiry=float(expiry), owner=owner or None)
        except ValueError:
            return cls(expiry=0.0)

    def valid_at(self, now: float) -> bool:
        return self.expiry > now


@dataclass(frozen=True)
class LeaseState:
    """Snapshot of the lock key as seen by one process."""

    key: str
    expiry: float | None
    owner: str | None
    expired: bool
    held_by_me: bool


class LeaseManager:
    """Acquires, renews and releases the filler lease of one bucket.

    The takeover sequence (conditional set, read, swap) is not atomic as a
    whole: two processes may both detect expiry and the loser still overwrites
    the lock. With ``fencing`` enabled renewal is a compare-and-set on the value
    this process last wrote, so a usurped owner notices and steps down instead
    of reasserting itself. Without fencing renewal is an unconditional write and
    the lease carries no identity.
    """

    def __init__(
        self,
        store: BucketStore,
        lock_key: str,
        lease_duration: float,
        *,
        fencing: bool = True,
        owner_id: str | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if lease_duration <= 0:
            raise ValueError("lease_duration must be positive")
        self._store = store
        self._lock_key = lock_key
        self._lease_duration = lease_duration
        self._fencing = fencing
        self._owner_id = owner_id or f"{socket.gethostname()}-{uuid.uuid4()}"
        self._clock = clock
        self._held: str | None = None

    @property
    def owner_id(self) -> str:
        return self._owner_id

    @property
    def lock_key(self) -> str:
        return self._lock_key

    @property
    def held(self) -> bool:
        """Whether this process currently believes it owns the lease."""
        return self._held is not None

    def _candidate(self, now: float) -> LeaseValue:
        return LeaseValue(
            expiry=now + self._lease_duration,
            owner=self._owner_id if self._fencing else None,
        )

    def _hold(self, value: LeaseValue, encoded: str) -> LeaseValue:
        self._held = encoded
        return value

    async def try_acquire_or_takeover(self) -> LeaseValue | None:
        """Claim the lease if it is free or expired.

        Returns the lease value written when this process became owner, or
        ``None`` when another process holds a valid lease. Store failures
        propagate as :class:`StoreCommunicationError`.
        """
        now = self._clock()
        candidate = self._candidate(now)
        encoded = candidate.encode()

        if await self._store.set_if_absent(self._lock_key, encoded):
            return self._hold(candidate, encoded)

        raw = await self._store.get(self._lock_key)
        current = LeaseValue.decode(raw)
        if current is not None and current.valid_at(now):
            if self._fencing and current.owner == self._owner_id:
                # our own lease outlived a restart of the refill loop
                if await self._store.compare_and_set(self._lock_key, raw, encoded):
                    return self._hold(candidate, encoded)
            return None

        previous = LeaseValue.decode(
            await self._store.swap_and_return_previous(self._lock_key, encoded)
        )
        if previous is not None and previous.valid_at(now):
            # lost the race to a concurrent takeover but overwrote its lease anyway
            logger.warning(
                "lease_takeover_race",
                lock_key=self._lock_key,
                owner=self._owner_id,
                winner=previous.owner,
            )
            return None
        return self._hold(candidate, encoded)

    async def renew(self) -> bool:
        """Push the lease expiry one lease duration into the future.

        Returns ``False`` when fencing detects that another process has
        replaced this process's lease; nothing is written in that case.
        """
        candidate = self._candidate(self._clock())
        encoded = candidate.encode()

        if not self._fencing:
            await self._store.set(self._lock_key, encoded)
            self._held = encoded
            return True

        if self._held is None:
            return False
        if await self._store.compare_and_set(self._lock_key, self._held, encoded):
            self._held = encoded
            return True
        self._held = None
        return False

    async def release(self) -> bool:
        """Delete the lock key if it still carries this process's lease.

        Only fenced leases can be released; an unfenced lease just lapses.
        """
        held, self._held = self._held, None
        if not self._fencing or held is None:
            return False
        return await self._store.compare_and_delete(self._lock_key, held)

    async def inspect(self) -> LeaseState:
        raw = await self._store.get(self._lock_key)
        value = LeaseValue.decode(raw)
        if value is None:
            return LeaseState(key=self._lock_key, expiry=None, owner=None, expired=True, held_by_me=False)
        return LeaseState(
            key=self._lock_key,
            expiry=value.expiry,
            owner=value.owner,
            expired=not value.valid_at(self._clock()),
            held_by_me=raw == self._held,
        )
