"""Freshness-bounded cache of the merged robot status."""

from __future__ import annotations

import enum
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Literal, TypeVar

from pyroomba._constants import STATUS_TIMEOUT
from pyroomba._redact import format_duration
from pyroomba.models.status import StatusSnapshot

_logger = logging.getLogger(__name__)

T = TypeVar("T")


class _NoValue(enum.Enum):
    NO_VALUE = "no_value"

    def __repr__(self) -> str:
        return "NO_VALUE"


NO_VALUE = _NoValue.NO_VALUE
"""Returned by :meth:`StatusCache.read` when a value is not available."""

NoValue = Literal[_NoValue.NO_VALUE]


class StatusCache:
    """Latest merged snapshot plus the time it was last known to be complete.

    A read inside ``last_poll_interval + 2 * status_timeout`` of the last
    refresh is served from memory.  Older reads trigger one refresh first.
    """

    def __init__(
        self,
        refresh: Callable[[], Awaitable[bool]],
        *,
        status_timeout: float = STATUS_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._refresh = refresh
        self._status_timeout = status_timeout
        self._clock = clock
        self._snapshot = StatusSnapshot()
        self._last_refresh: float | None = None
        self.last_poll_interval: float = 0.0

    @property
    def snapshot(self) -> StatusSnapshot:
        return self._snapshot

    @property
    def last_refresh(self) -> float | None:
        return self._last_refresh

    @property
    def max_age(self) -> float:
        return self.last_poll_interval + 2 * self._status_timeout

    def age(self) -> float | None:
        """Seconds since the last fresh merge, ``None`` if never refreshed."""
        if self._last_refresh is None:
            return None
        return self._clock() - self._last_refresh

    def is_fresh(self) -> bool:
        age = self.age()
        return age is not None and age < self.max_age

    def merge(self, snapshot: StatusSnapshot, *, fresh: bool) -> StatusSnapshot:
        """Overlay *snapshot* onto the cache.  The only writer."""
        self._snapshot = self._snapshot.merge(snapshot)
        if fresh:
            self._last_refresh = self._clock()
        return self._snapshot

    async def read(self, extractor: Callable[[StatusSnapshot], T | None]) -> T | NoValue:
        """Extract a value, refreshing first when the cache is stale."""
        if not self.is_fresh():
            age = self.age()
            _logger.debug(
                "Cached status is stale (age=%s), refreshing",
                format_duration(age) if age is not None else "never",
            )
            if not await self._refresh():
                return NO_VALUE

        value = extractor(self._snapshot)
        return NO_VALUE if value is None else value
