"""Background status polling."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

from pyroomba._cache import StatusCache
from pyroomba._constants import DEFAULT_IDLE_POLL_INTERVAL, INITIAL_POLL_RETRY_DELAY
from pyroomba._redact import format_duration
from pyroomba.refresh import StateRefresher
from pyroomba.session import RobotSession, SessionHolder

_logger = logging.getLogger(__name__)


class PollScheduler:
    """Keeps the status cache warm with a self-rescheduling timer.

    At most one timer is armed at any time.  A refresh requested by the
    user cancels the armed timer and re-arms it once the refresh is done,
    so an on-demand refresh also counts as the next scheduled poll.
    """

    def __init__(
        self,
        holder: SessionHolder,
        refresher: StateRefresher,
        cache: StatusCache,
        *,
        idle_poll_interval: float = DEFAULT_IDLE_POLL_INTERVAL,
        initial_retry_delay: float = INITIAL_POLL_RETRY_DELAY,
    ) -> None:
        self._holder = holder
        self._refresher = refresher
        self._cache = cache
        self._idle_poll_interval = idle_poll_interval
        self._initial_retry_delay = initial_retry_delay
        self._token: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task[Any]] = set()
        self._closed = False

    @property
    def armed(self) -> bool:
        return self._token is not None

    def start_polling(self) -> asyncio.Task[bool]:
        _logger.debug("Starting poll for device state")
        return self._spawn(self._initial_poll())

    def schedule_next_update(self) -> None:
        self._cancel_token()
        _logger.debug("Scheduling next update in %s", format_duration(self._idle_poll_interval))
        self._cache.last_poll_interval = self._idle_poll_interval
        self._arm(self._idle_poll_interval, self._on_idle_timer)

    def refresh_status_for_user(self, session: RobotSession | None = None) -> asyncio.Task[bool]:
        """Refresh now, then re-arm the idle timer.

        When *session* is given the refresh keeps using that connection.
        It is retained before this method returns, so the caller may
        release its own borrow right away.
        """
        _logger.debug("Fetching updated status for user")
        self._cancel_token()
        if session is not None:
            self._holder.retain(session)
        return self._spawn(self._refresh_for_user(session))

    async def close(self) -> None:
        self._closed = True
        self._cancel_token()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _initial_poll(self) -> bool:
        success = False
        try:
            success = await self._refresher.refresh()
        finally:
            if not self._closed:
                if success:
                    _logger.debug("Initial state obtained, setting up polling")
                    self.schedule_next_update()
                else:
                    _logger.debug(
                        "Failed to obtain initial state, retrying in %s",
                        format_duration(self._initial_retry_delay),
                    )
                    self._cancel_token()
                    self._arm(self._initial_retry_delay, self._on_retry_timer)
        return success

    async def _refresh_for_user(self, session: RobotSession | None) -> bool:
        success = False
        try:
            success = await self._refresher.refresh(session)
        finally:
            if not self._closed:
                if success:
                    _logger.debug("User status updated, scheduling next update")
                else:
                    _logger.debug("Failed to update user status, scheduling next update anyway")
                self.schedule_next_update()
        return success

    def _on_retry_timer(self) -> None:
        self._token = None
        self.start_polling()

    def _on_idle_timer(self) -> None:
        self._token = None
        _logger.debug("Executing scheduled update")
        self.refresh_status_for_user()

    def _arm(self, delay: float, callback: Callable[[], None]) -> None:
        if self._closed:
            return
        self._token = asyncio.get_running_loop().call_later(delay, callback)

    def _cancel_token(self) -> None:
        if self._token is not None:
            self._token.cancel()
            self._token = None

    def _spawn(self, coro: Coroutine[Any, Any, bool]) -> asyncio.Task[bool]:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            _logger.warning("Status poll failed", exc_info=exc)
