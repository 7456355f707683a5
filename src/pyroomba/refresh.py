"""Collect a complete status snapshot from the robot's report stream."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from types import TracebackType
from typing import Any

from pydantic import ValidationError

from pyroomba._cache import StatusCache
from pyroomba._constants import STATUS_TIMEOUT
from pyroomba._redact import format_duration
from pyroomba._transport import RobotTransport, TransportEvent
from pyroomba.exceptions import RoombaError, RoombaRefreshTimeoutError
from pyroomba.models.status import StatusSnapshot
from pyroomba.session import RobotSession, SessionHolder

_logger = logging.getLogger(__name__)


class _StateStream:
    """Reports published by one robot, buffered while the block is open."""

    def __init__(self, robot: RobotTransport) -> None:
        self._robot = robot
        self._queue: asyncio.Queue[Mapping[str, Any]] = asyncio.Queue()
        self._listener = self._queue.put_nowait

    def __enter__(self) -> _StateStream:
        self._robot.on(TransportEvent.STATE, self._listener)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self._robot.off(TransportEvent.STATE, self._listener)

    async def next(self, deadline: float) -> Mapping[str, Any]:
        remaining = deadline - asyncio.get_running_loop().time()
        if remaining <= 0:
            raise RoombaRefreshTimeoutError("Status deadline passed")
        try:
            return await asyncio.wait_for(self._queue.get(), remaining)
        except TimeoutError as exc:
            raise RoombaRefreshTimeoutError("Status deadline passed") from exc


async def collect_snapshot(stream: _StateStream, *, deadline: float) -> StatusSnapshot:
    """Fold reports until the snapshot is complete or *deadline* passes.

    Fragments that do not parse are skipped.

    Raises
    ------
    RoombaRefreshTimeoutError
        When the deadline passed; ``partial`` holds what was observed.
    """
    accumulated = StatusSnapshot()
    while not accumulated.is_complete:
        try:
            fragment = await stream.next(deadline)
        except RoombaRefreshTimeoutError as exc:
            raise RoombaRefreshTimeoutError(str(exc), partial=accumulated) from exc
        try:
            accumulated = accumulated.merge(StatusSnapshot.from_report(fragment))
        except ValidationError as exc:
            _logger.debug("Ignoring malformed report %s: %s", fragment, exc)
    return accumulated


class StateRefresher:
    """Runs refresh rounds and merges every forwarded report into the cache."""

    def __init__(
        self,
        holder: SessionHolder,
        cache: StatusCache,
        *,
        status_timeout: float = STATUS_TIMEOUT,
    ) -> None:
        self._holder = holder
        self._cache = cache
        self._status_timeout = status_timeout

    def ingest(self, snapshot: StatusSnapshot) -> None:
        """Merge a report seen on any borrowed connection.

        Only a merge that leaves the cache complete counts as a refresh.
        """
        merged = self._cache.merge(snapshot, fresh=False)
        if merged.is_complete:
            self._cache.merge(StatusSnapshot(), fresh=True)

    async def refresh(self, session: RobotSession | None = None) -> bool:
        """Borrow a connection and wait for a complete status.

        *session* is a session already retained by the caller; it is
        released when the round ends.  Returns ``False`` instead of raising
        when the robot cannot be reached or never reports everything.
        """
        loop = asyncio.get_running_loop()
        started = loop.time()
        try:
            async with self._holder.borrow(session) as borrowed:
                waiting_since = loop.time()
                with _StateStream(borrowed.robot) as stream:
                    try:
                        snapshot = await collect_snapshot(stream, deadline=waiting_since + self._status_timeout)
                    except RoombaRefreshTimeoutError as exc:
                        _logger.debug(
                            "Timeout waiting for full state from robot (%s). Last state received was: %s",
                            format_duration(loop.time() - waiting_since),
                            exc.partial,
                        )
                        return False
        except RoombaError as exc:
            _logger.warning("Failed to refresh robot state: %s", exc)
            return False

        self._cache.merge(snapshot, fresh=True)
        _logger.debug("Refreshed robot state in %s: %s", format_duration(loop.time() - started), snapshot)
        return True
