from __future__ import annotations

import asyncio
import copy
from collections.abc import Callable, Sequence
from typing import Any

import pytest

from pyroomba._transport import EventSource, TransportEvent
from pyroomba.config import DeviceIdentity, RoombaConfig
from pyroomba.exceptions import RoombaCommandError
from pyroomba.models.mission import RoomMission

COMPLETE_REPORT: dict[str, Any] = {
    "batPct": 87,
    "bin": {"present": True, "full": False},
    "cleanMissionStatus": {"phase": "charge", "cycle": "none"},
}

HANG = "hang"
CONNECT = "connect"


class FakeRobot(EventSource):
    """In-memory robot transport.

    *behaviour* decides what ``connect()`` does: ``"connect"`` emits CONNECT,
    ``"hang"`` does nothing and an exception instance is emitted as ERROR.
    While connected, every new STATE listener triggers one report of
    *auto_report*, like a robot publishing its shadow periodically.
    """

    def __init__(
        self,
        identity: DeviceIdentity,
        cipher: str,
        behaviour: Any = CONNECT,
        *,
        auto_report: dict[str, Any] | None = None,
    ) -> None:
        super().__init__()
        self.identity = identity
        self.cipher = cipher
        self.behaviour = behaviour
        self.auto_report = auto_report
        self.connected = False
        self.end_calls = 0
        self.calls: list[tuple[Any, ...]] = []
        self.shadow: dict[str, Any] = {}
        self.phases: list[str] = []
        self.failures: dict[str, Exception] = {}

    @property
    def ended(self) -> bool:
        return self.end_calls > 0

    def on(self, event: TransportEvent, callback: Callable[..., None]) -> None:
        super().on(event, callback)
        if event is TransportEvent.STATE and self.connected and self.auto_report is not None:
            asyncio.get_running_loop().call_soon(self.report, self.auto_report)

    def connect(self) -> None:
        loop = asyncio.get_running_loop()
        if self.behaviour == CONNECT:
            loop.call_soon(self._connected)
        elif isinstance(self.behaviour, BaseException):
            loop.call_soon(self.emit, TransportEvent.ERROR, self.behaviour)

    def _connected(self) -> None:
        if self.ended:
            return
        self.connected = True
        self.emit(TransportEvent.CONNECT)

    def end(self) -> None:
        self.end_calls += 1
        self.connected = False

    def report(self, fragment: dict[str, Any]) -> None:
        self.shadow.update(copy.deepcopy(fragment))
        self.emit(TransportEvent.STATE, copy.deepcopy(fragment))

    async def _call(self, name: str, *args: Any) -> None:
        self.calls.append((name, *args))
        failure = self.failures.get(name)
        if failure is not None:
            raise failure

    async def clean(self) -> None:
        await self._call("clean")

    async def clean_room(self, mission: RoomMission) -> None:
        await self._call("clean_room", mission)

    async def pause(self) -> None:
        await self._call("pause")

    async def resume(self) -> None:
        await self._call("resume")

    async def dock(self) -> None:
        await self._call("dock")

    async def find(self) -> None:
        await self._call("find")

    async def get_robot_state(self, fields: Sequence[str]) -> dict[str, Any]:
        await self._call("get_robot_state", tuple(fields))
        if "cleanMissionStatus" in fields and self.phases:
            self.shadow["cleanMissionStatus"] = {"phase": self.phases.pop(0)}
        missing = [name for name in fields if name not in self.shadow]
        if missing:
            raise RoombaCommandError(f"Robot did not report {missing}", command="getRobotState")
        return {name: copy.deepcopy(self.shadow[name]) for name in fields}


class RobotFactory:
    """Transport factory handing out :class:`FakeRobot` instances.

    Behaviours are consumed in order, then *default* is used.
    """

    def __init__(
        self,
        behaviours: Sequence[Any] = (),
        *,
        default: Any = CONNECT,
        auto_report: dict[str, Any] | None = None,
    ) -> None:
        self.behaviours = list(behaviours)
        self.default = default
        self.auto_report = auto_report
        self.robots: list[FakeRobot] = []
        self.setup: Callable[[FakeRobot], None] | None = None

    def __call__(self, identity: DeviceIdentity, cipher: str) -> FakeRobot:
        behaviour = self.behaviours.pop(0) if self.behaviours else self.default
        robot = FakeRobot(identity, cipher, behaviour, auto_report=self.auto_report)
        if self.setup is not None:
            self.setup(robot)
        self.robots.append(robot)
        return robot

    @property
    def last(self) -> FakeRobot:
        return self.robots[-1]


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def settle(rounds: int = 50) -> None:
    """Let callbacks and spawned tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def identity() -> DeviceIdentity:
    return DeviceIdentity(blid="3145C71060912345", password=":1:1577891234:AbCdEfGhIjKlMnOp", address="192.168.1.50")


@pytest.fixture
def config(identity: DeviceIdentity) -> RoombaConfig:
    return RoombaConfig(identity=identity, name="Living Room")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
