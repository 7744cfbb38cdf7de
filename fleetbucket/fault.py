"""Broadcast cell carrying the fatal error of a bucket's refill loop."""

from __future__ import annotations


class FaultCell:
    """Holds at most one fatal error, readable by every consumer.

    The first error posted since the last :meth:`clear` wins and bumps
    :attr:`version`; later posts are ignored until the cell is cleared.
    Consumers poll :meth:`current`.
    """

    def __init__(self) -> None:
        self._error: BaseException | None = None
        self._version = 0

    @property
    def version(self) -> int:
        return self._version

    def current(self) -> BaseException | None:
        return self._error

    def post(self, error: BaseException) -> bool:
        if self._error is not None:
            return False
        self._error = error
        self._version += 1
        return True

    def clear(self) -> None:
        self._error = None
