"""Shared, reference-counted robot connection.

The robot accepts a single MQTT client at a time, so every consumer (the
background poll, cache reads, commands) borrows the same connection.  The
first borrower starts connecting; later borrowers wait on the same attempt.
The connection is closed as soon as the last borrower releases it.
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import functools
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass

from pydantic import ValidationError

from pyroomba._constants import CONNECT_TIMEOUT
from pyroomba._redact import format_duration
from pyroomba._transport import RobotTransport, TransportEvent, TransportFactory
from pyroomba.cipher import CipherDecision, CipherNegotiator
from pyroomba.config import DeviceIdentity
from pyroomba.exceptions import (
    RoombaConnectTimeoutError,
    RoombaError,
    RoombaTransportFatalError,
    RoombaTransportRejectedError,
)
from pyroomba.models.status import StatusSnapshot

_logger = logging.getLogger(__name__)


class ConnectionPhase(enum.Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


@dataclass(eq=False)
class RobotSession:
    """A live connection plus the number of callers currently using it."""

    robot: RobotTransport
    cipher: str
    borrowers: int = 0
    closed: bool = False


class _ConnectAttempt:
    """One connection attempt with one cipher suite.

    ``IDLE -> CONNECTING -> CONNECTED | FAILED``.  FAILED is terminal: a
    CONNECT that arrives afterwards only closes the late connection.
    """

    def __init__(self, robot: RobotTransport, cipher: str, *, timeout: float) -> None:
        self.robot = robot
        self.cipher = cipher
        self.phase = ConnectionPhase.IDLE
        self._timeout = timeout
        self._loop = asyncio.get_running_loop()
        self._outcome: asyncio.Future[None] = self._loop.create_future()
        self._timer: asyncio.TimerHandle | None = None
        self._started_at = 0.0

    @property
    def elapsed(self) -> float:
        return self._loop.time() - self._started_at

    async def run(self) -> None:
        self.phase = ConnectionPhase.CONNECTING
        self._started_at = self._loop.time()
        self.robot.on(TransportEvent.CONNECT, self._on_connect)
        self.robot.on(TransportEvent.ERROR, self._on_error)
        self._timer = self._loop.call_later(self._timeout, self._on_timeout)

        _logger.debug("Connecting to robot with cipher %s", self.cipher)
        try:
            self.robot.connect()
        except Exception as exc:
            self._fail(exc)

        try:
            await self._outcome
        except asyncio.CancelledError:
            if self.phase is not ConnectionPhase.FAILED:
                self._fail(None)
            raise

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_connect(self) -> None:
        self.robot.off(TransportEvent.CONNECT, self._on_connect)
        if self.phase is ConnectionPhase.FAILED:
            _logger.debug("Connection to robot established after failure, closing it")
            self.robot.end()
            return
        if self.phase is not ConnectionPhase.CONNECTING:
            return

        self._cancel_timer()
        self.phase = ConnectionPhase.CONNECTED
        _logger.debug("Connected to robot in %s", format_duration(self.elapsed))
        if not self._outcome.done():
            self._outcome.set_result(None)

    def _on_error(self, error: BaseException) -> None:
        if self.phase is ConnectionPhase.CONNECTED:
            _logger.debug("Robot connection error: %s", error)
            return
        if self.phase is not ConnectionPhase.CONNECTING:
            return
        _logger.debug("Connection received error: %s", error)
        self._fail(error)

    def _on_timeout(self) -> None:
        self._timer = None
        if self.phase is not ConnectionPhase.CONNECTING:
            return
        _logger.debug("Timed out after %s trying to connect to robot", format_duration(self.elapsed))
        self._fail(RoombaConnectTimeoutError("Connect timed out", cipher=self.cipher))

    def _fail(self, error: BaseException | None) -> None:
        self._cancel_timer()
        self.phase = ConnectionPhase.FAILED
        self.robot.off(TransportEvent.ERROR, self._on_error)
        self.robot.end()
        if error is not None and not self._outcome.done():
            self._outcome.set_exception(error)


class SessionHolder:
    """Owns at most one connecting-or-live robot connection.

    Parameters
    ----------
    identity : DeviceIdentity
        Robot credentials and address.
    negotiator : CipherNegotiator
        Supplies the cipher suite and decides on fallback.
    transport_factory : callable
        ``(identity, cipher) -> RobotTransport``.
    on_state : callable or None
        Receives every status report of a connected robot, regardless of
        who borrowed the connection.
    connect_timeout : float
        Seconds before a single connection attempt is abandoned.
    """

    def __init__(
        self,
        identity: DeviceIdentity,
        negotiator: CipherNegotiator,
        transport_factory: TransportFactory,
        *,
        on_state: Callable[[StatusSnapshot], None] | None = None,
        connect_timeout: float = CONNECT_TIMEOUT,
    ) -> None:
        self._identity = identity
        self._negotiator = negotiator
        self._transport_factory = transport_factory
        self._on_state = on_state
        self._connect_timeout = connect_timeout
        self._pending: asyncio.Task[RobotSession] | None = None
        self._waiting = 0
        self._aborted: set[asyncio.Task[RobotSession]] = set()
        self.attempts_started = 0

    @property
    def phase(self) -> ConnectionPhase:
        task = self._pending
        if task is None:
            return ConnectionPhase.IDLE
        if not task.done():
            return ConnectionPhase.CONNECTING
        if task.cancelled() or task.exception() is not None:
            return ConnectionPhase.FAILED
        return ConnectionPhase.CONNECTED

    @property
    def session(self) -> RobotSession | None:
        """The live session, if any."""
        if self.phase is not ConnectionPhase.CONNECTED:
            return None
        assert self._pending is not None  # noqa: S101
        session = self._pending.result()
        return None if session.closed else session

    # ------------------------------------------------------------------
    # Borrowing
    # ------------------------------------------------------------------

    async def acquire(self) -> RobotSession:
        """Join or start the connection and count the caller as a borrower.

        Every caller waiting on the same attempt receives the same session,
        or the same exception.  Pair with :meth:`release`.
        """
        while True:
            task = self._pending
            if task is None:
                task = asyncio.get_running_loop().create_task(self._open())
                self._pending = task

            self._waiting += 1
            try:
                session = await asyncio.shield(task)
            except asyncio.CancelledError:
                self._waiting -= 1
                self._abandon(task)
                raise
            except Exception:
                self._waiting -= 1
                if self._pending is task:
                    self._pending = None
                raise
            self._waiting -= 1

            if session.closed:
                # Released to zero between the attempt resolving and this
                # borrower resuming; start over with a fresh connection.
                continue
            session.borrowers += 1
            return session

    def retain(self, session: RobotSession) -> RobotSession:
        """Count one more borrower on a session the caller already holds."""
        if session.closed:
            raise RoombaError("Cannot retain a closed robot session")
        session.borrowers += 1
        return session

    def release(self, session: RobotSession) -> None:
        """Drop one borrower; close the connection when none remain."""
        if session.closed or session.borrowers <= 0:
            return
        session.borrowers -= 1
        if session.borrowers > 0:
            _logger.debug("Leaving robot connection with %d ongoing requests", session.borrowers)
            return
        self._close(session)

    @contextlib.asynccontextmanager
    async def borrow(self, retained: RobotSession | None = None) -> AsyncIterator[RobotSession]:
        """Borrow the shared session for the duration of the block.

        *retained* is a session already counted through :meth:`retain`; it
        is released on exit instead of acquiring a new borrow.
        """
        session = retained if retained is not None else await self.acquire()
        try:
            yield session
        finally:
            self.release(session)

    async def close(self) -> None:
        """Abort a pending attempt or end the live session unconditionally."""
        task = self._pending
        self._pending = None
        if task is not None and not task.done():
            task.cancel()
        for attempt in [*self._aborted, *([task] if task is not None else [])]:
            await self._finish(attempt)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _finish(self, task: asyncio.Task[RobotSession]) -> None:
        """Wait for an attempt to settle and end whatever it produced."""
        await asyncio.wait([task])
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            _logger.debug("Connection attempt failed during close: %s", error)
            return
        session = task.result()
        if not session.closed:
            session.borrowers = 0
            self._close(session)

    def _close(self, session: RobotSession) -> None:
        session.closed = True
        task = self._pending
        if task is not None and task.done() and not task.cancelled() and task.exception() is None:
            if task.result() is session:
                self._pending = None
        _logger.debug("Closing robot connection")
        session.robot.end()

    def _abandon(self, task: asyncio.Task[RobotSession]) -> None:
        """Handle a borrower cancelled while waiting for the connection."""
        if self._waiting > 0 or self._pending is not task:
            return
        if not task.done():
            _logger.debug("All borrowers cancelled, aborting connection attempt")
            task.cancel()
            self._pending = None
            self._aborted.add(task)
            task.add_done_callback(self._aborted.discard)
            return
        if not task.cancelled() and task.exception() is None:
            session = task.result()
            if session.borrowers == 0 and not session.closed:
                self._close(session)

    def _forward_state(self, attempt: _ConnectAttempt, session: RobotSession, fragment: dict[str, object]) -> None:
        if attempt.phase is not ConnectionPhase.CONNECTED or session.closed:
            return
        if self._on_state is None:
            return
        try:
            snapshot = StatusSnapshot.from_report(fragment)
        except ValidationError as exc:
            _logger.debug("Ignoring malformed report %s: %s", fragment, exc)
            return
        self._on_state(snapshot)

    async def _open(self) -> RobotSession:
        attempts = 0
        while True:
            cipher = self._negotiator.current
            robot = self._transport_factory(self._identity, cipher)
            session = RobotSession(robot=robot, cipher=cipher)
            attempt = _ConnectAttempt(robot, cipher, timeout=self._connect_timeout)
            robot.on(TransportEvent.STATE, functools.partial(self._forward_state, attempt, session))
            self.attempts_started += 1
            attempts += 1

            try:
                await attempt.run()
            except RoombaConnectTimeoutError:
                raise
            except Exception as exc:
                if self._negotiator.classify(exc) is CipherDecision.FATAL:
                    raise RoombaTransportFatalError(str(exc), cipher=cipher) from exc
                self._negotiator.advance()
                if attempts >= self._negotiator.max_attempts:
                    raise RoombaTransportRejectedError(str(exc), cipher=cipher) from exc
                _logger.debug("Retrying connection to robot with cipher %s", self._negotiator.current)
                continue
            return session
