"""High-level async client for a single Roomba."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Coroutine
from typing import Any

from pyroomba._cache import NoValue, StatusCache
from pyroomba._client import commands as _commands
from pyroomba._client import reads as _reads
from pyroomba._constants import CONNECT_TIMEOUT, DOCK_POLL_INTERVAL, INITIAL_POLL_RETRY_DELAY, STATUS_TIMEOUT
from pyroomba._mqtt import local_robot_factory
from pyroomba._transport import TransportFactory
from pyroomba.cipher import CipherNegotiator
from pyroomba.config import RoombaConfig
from pyroomba.models.mission import RoomMission
from pyroomba.models.status import StatusSnapshot
from pyroomba.refresh import StateRefresher
from pyroomba.scheduler import PollScheduler
from pyroomba.session import SessionHolder

_logger = logging.getLogger(__name__)


class RoombaClient:
    """Async client for one robot.

    Usage::

        async with RoombaClient(config) as client:
            if await client.docked() is True:
                await client.start()

    Entering the context starts background polling; leaving it cancels
    polling and closes the robot connection.
    """

    def __init__(
        self,
        config: RoombaConfig,
        *,
        transport_factory: TransportFactory = local_robot_factory,
        negotiator: CipherNegotiator | None = None,
        connect_timeout: float = CONNECT_TIMEOUT,
        status_timeout: float = STATUS_TIMEOUT,
        initial_retry_delay: float = INITIAL_POLL_RETRY_DELAY,
        dock_poll_interval: float = DOCK_POLL_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config
        self._dock_poll_interval = dock_poll_interval
        self._negotiator = negotiator or CipherNegotiator()
        self._cache = StatusCache(self.refresh, status_timeout=status_timeout, clock=clock)
        self._holder = SessionHolder(
            config.identity,
            self._negotiator,
            transport_factory,
            on_state=self._on_state,
            connect_timeout=connect_timeout,
        )
        self._refresher = StateRefresher(self._holder, self._cache, status_timeout=status_timeout)
        self._scheduler = PollScheduler(
            self._holder,
            self._refresher,
            self._cache,
            idle_poll_interval=config.idle_poll_interval,
            initial_retry_delay=initial_retry_delay,
        )
        self._background: set[asyncio.Task[Any]] = set()

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> RoombaClient:
        self._scheduler.start_polling()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self._scheduler.close()
        tasks = list(self._background)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self._holder.close()

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    @property
    def config(self) -> RoombaConfig:
        return self._config

    @property
    def cache(self) -> StatusCache:
        return self._cache

    @property
    def negotiator(self) -> CipherNegotiator:
        return self._negotiator

    @property
    def holder(self) -> SessionHolder:
        return self._holder

    @property
    def scheduler(self) -> PollScheduler:
        return self._scheduler

    @property
    def status(self) -> StatusSnapshot:
        """The cached snapshot, without any freshness check."""
        return self._cache.snapshot

    def _on_state(self, snapshot: StatusSnapshot) -> None:
        self._refresher.ingest(snapshot)

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def refresh(self) -> bool:
        """Run one refresh round now.  Returns ``False`` on failure."""
        return await self._refresher.refresh()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Resume a paused robot, otherwise start cleaning."""
        await _commands.start(self)

    async def stop(self) -> None:
        """Pause the robot; with ``StopBehaviour.HOME`` it then docks."""
        await _commands.stop(self)

    async def set_docking(self, docking: bool) -> None:
        await _commands.set_docking(self, docking)

    async def locate(self) -> None:
        """Make the robot play its locator sound."""
        await _commands.locate(self)

    async def identify(self) -> None:
        await _commands.identify(self)

    async def last_command(self) -> RoomMission | None:
        return await _reads.last_command(self)

    # ------------------------------------------------------------------
    # Cached reads
    # ------------------------------------------------------------------

    async def running(self) -> bool | NoValue:
        return await _reads.running(self)

    async def battery_level(self) -> int | NoValue:
        return await _reads.battery_level(self)

    async def charging(self) -> bool | NoValue:
        return await _reads.charging(self)

    async def low_battery(self) -> bool | NoValue:
        return await _reads.low_battery(self)

    async def bin_full(self) -> bool | NoValue:
        return await _reads.bin_full(self)

    async def docked(self) -> bool | NoValue:
        return await _reads.docked(self)

    async def docking(self) -> bool | NoValue:
        return await _reads.docking(self)
