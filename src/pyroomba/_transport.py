"""Device transport interface consumed by the connection core.

The session holder, refresher and command sequencer only ever talk to a
:class:`RobotTransport`.  :class:`pyroomba._mqtt.LocalRobot` is the
production implementation; tests pass in-memory doubles.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from pyroomba.config import DeviceIdentity
    from pyroomba.models.mission import RoomMission

_logger = logging.getLogger(__name__)


class TransportEvent(enum.StrEnum):
    CONNECT = "connect"
    """Connection established.  Callback takes no arguments."""
    ERROR = "error"
    """Connection-level error.  Callback receives the exception."""
    STATE = "state"
    """Reported state.  Callback receives a raw camelCase dict; LocalRobot
    sends the whole shadow accumulated on the connection."""


class RobotTransport(Protocol):
    """Structural interface of one robot connection.

    ``connect`` only starts connecting; the outcome arrives as a
    ``CONNECT`` or ``ERROR`` event.  Commands resolve once the robot has
    accepted them and raise :class:`pyroomba.exceptions.RoombaCommandError`
    otherwise.
    """

    def on(self, event: TransportEvent, callback: Callable[..., None]) -> None: ...

    def off(self, event: TransportEvent, callback: Callable[..., None]) -> None: ...

    def connect(self) -> None: ...

    def end(self) -> None: ...

    async def clean(self) -> None: ...

    async def clean_room(self, mission: RoomMission) -> None: ...

    async def pause(self) -> None: ...

    async def resume(self) -> None: ...

    async def dock(self) -> None: ...

    async def find(self) -> None: ...

    async def get_robot_state(self, fields: Sequence[str]) -> dict[str, Any]: ...


TransportFactory = Callable[["DeviceIdentity", str], RobotTransport]
"""Builds an unconnected transport for an identity and a cipher suite."""


class EventSource:
    """Listener registry shared by transport implementations."""

    def __init__(self) -> None:
        self._listeners: dict[TransportEvent, list[Callable[..., None]]] = {}

    def on(self, event: TransportEvent, callback: Callable[..., None]) -> None:
        self._listeners.setdefault(event, []).append(callback)

    def off(self, event: TransportEvent, callback: Callable[..., None]) -> None:
        listeners = self._listeners.get(event)
        if listeners and callback in listeners:
            listeners.remove(callback)

    def listener_count(self, event: TransportEvent) -> int:
        return len(self._listeners.get(event, []))

    def emit(self, event: TransportEvent, *args: Any) -> None:
        # Copy: listeners may unregister themselves while being called.
        for callback in list(self._listeners.get(event, [])):
            try:
                callback(*args)
            except Exception:
                _logger.warning("Listener for %s event failed", event, exc_info=True)
