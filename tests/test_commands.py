from __future__ import annotations

import asyncio
import logging
from typing import Any

import pytest
from conftest import COMPLETE_REPORT, FakeClock, RobotFactory, settle

from pyroomba._client.commands import dock_when_stopped
from pyroomba._constants import DOCK_POLL_INTERVAL
from pyroomba.client import RoombaClient
from pyroomba.config import CleanBehaviour, DeviceIdentity, RoombaConfig, StopBehaviour
from pyroomba.exceptions import RoombaCommandError, RoombaTransportError
from pyroomba.models.mission import Region, RoomMission
from pyroomba.models.status import MissionPhase, StatusSnapshot

MISSION = RoomMission(
    pmap_id="ZKnN6Fm6TDG4ZHs0cy2AfQ",
    regions=[Region(region_id="11"), Region(region_id="3")],
    user_pmapv_id="231103T120120",
)


def _client(config: RoombaConfig, factory: RobotFactory, clock: FakeClock) -> RoombaClient:
    return RoombaClient(
        config,
        transport_factory=factory,
        connect_timeout=1.0,
        status_timeout=0.2,
        dock_poll_interval=0.01,
        clock=clock,
    )


def _names(factory: RobotFactory) -> list[str]:
    return [call[0] for robot in factory.robots for call in robot.calls]


async def _drain(client: RoombaClient) -> None:
    """Wait for spawned background work (refreshes, dock sequence)."""
    for _ in range(50):
        pending = list(client._background) + list(client.scheduler._tasks)  # type: ignore[attr-defined]
        if not pending:
            return
        await asyncio.gather(*pending, return_exceptions=True)
    await settle()


@pytest.mark.asyncio
async def test_start_cleans_everywhere_and_refreshes(config: RoombaConfig, clock: FakeClock) -> None:
    factory = RobotFactory(auto_report=COMPLETE_REPORT)
    client = _client(config, factory, clock)

    await client.start()
    await _drain(client)

    assert _names(factory) == ["clean"]
    # The post-command refresh reused the command's connection.
    assert len(factory.robots) == 1
    assert client.cache.last_refresh == clock.now
    assert client.scheduler.armed
    assert factory.last.ended
    await client.close()


@pytest.mark.asyncio
async def test_start_resumes_when_paused(config: RoombaConfig, clock: FakeClock) -> None:
    factory = RobotFactory(auto_report=COMPLETE_REPORT)
    client = _client(config, factory, clock)
    client.cache.merge(StatusSnapshot.from_report({"cleanMissionStatus": {"phase": "pause"}}), fresh=False)

    await client.start()
    await _drain(client)

    assert _names(factory) == ["resume"]
    await client.close()


@pytest.mark.asyncio
async def test_start_cleans_configured_rooms(identity: DeviceIdentity, clock: FakeClock) -> None:
    config = RoombaConfig(identity=identity, clean_behaviour=CleanBehaviour.ROOMS, mission=MISSION)
    factory = RobotFactory(auto_report=COMPLETE_REPORT)
    client = _client(config, factory, clock)

    await client.start()
    await _drain(client)

    assert factory.robots[0].calls == [("clean_room", MISSION)]
    await client.close()


@pytest.mark.asyncio
async def test_stop_running_robot_pauses_then_docks_once_stopped(config: RoombaConfig, clock: FakeClock) -> None:
    factory = RobotFactory(auto_report=COMPLETE_REPORT)
    factory.setup = lambda robot: robot.phases.extend(["run", "run", "run", "stop"])
    client = _client(config, factory, clock)

    await client.stop()
    await _drain(client)

    assert _names(factory) == [
        "get_robot_state",
        "pause",
        "get_robot_state",
        "get_robot_state",
        "get_robot_state",
        "dock",
    ]
    # The whole sequence ran on one connection, closed once everyone was done.
    assert len(factory.robots) == 1
    assert factory.last.ended
    assert client.holder.session is None
    await client.close()


@pytest.mark.asyncio
async def test_dock_sequence_polls_phase_every_three_seconds(
    config: RoombaConfig,
    clock: FakeClock,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    real_sleep = asyncio.sleep
    delays: list[float] = []

    async def _sleep(delay: float, *args: Any) -> Any:
        if delay:
            delays.append(delay)
        return await real_sleep(0, *args)

    monkeypatch.setattr(asyncio, "sleep", _sleep)
    factory = RobotFactory(auto_report=COMPLETE_REPORT)
    factory.setup = lambda robot: robot.phases.extend(["run", "run", "run", "stop"])
    # Default dock poll interval.
    client = RoombaClient(config, transport_factory=factory, connect_timeout=1.0, status_timeout=0.2, clock=clock)

    await client.stop()
    await _drain(client)

    assert DOCK_POLL_INTERVAL == 3.0
    assert delays == [3.0, 3.0]
    assert _names(factory)[-1] == "dock"
    await client.close()


@pytest.mark.asyncio
async def test_stop_refreshes_even_when_pause_fails(config: RoombaConfig, clock: FakeClock) -> None:
    factory = RobotFactory(auto_report=COMPLETE_REPORT)

    def _setup(robot: object) -> None:
        robot.phases.append("run")  # type: ignore[attr-defined]
        robot.failures["pause"] = RoombaCommandError("pause was not acknowledged in time", command="pause")  # type: ignore[attr-defined]

    factory.setup = _setup
    client = _client(config, factory, clock)

    with pytest.raises(RoombaCommandError):
        await client.stop()
    await _drain(client)

    assert _names(factory) == ["get_robot_state", "pause"]
    assert len(factory.robots) == 1
    assert client.cache.last_refresh == clock.now
    assert client.scheduler.armed
    await client.close()


@pytest.mark.asyncio
async def test_stop_with_pause_behaviour_does_not_dock(identity: DeviceIdentity, clock: FakeClock) -> None:
    config = RoombaConfig(identity=identity, stop_behaviour=StopBehaviour.PAUSE)
    factory = RobotFactory(auto_report=COMPLETE_REPORT)
    factory.setup = lambda robot: robot.phases.extend(["run", "stop"])
    client = _client(config, factory, clock)

    await client.stop()
    await _drain(client)

    assert _names(factory) == ["get_robot_state", "pause"]
    await client.close()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("phase", "expected"),
    [
        ("hmPostMsn", ["get_robot_state", "pause"]),
        ("charge", ["get_robot_state"]),
        ("stop", ["get_robot_state"]),
    ],
)
async def test_stop_branches_on_live_phase(
    config: RoombaConfig,
    clock: FakeClock,
    phase: str,
    expected: list[str],
) -> None:
    factory = RobotFactory(auto_report=COMPLETE_REPORT)
    factory.setup = lambda robot: robot.phases.append(phase)
    client = _client(config, factory, clock)

    await client.stop()
    await _drain(client)

    assert _names(factory) == expected
    assert client.scheduler.armed
    await client.close()


@pytest.mark.asyncio
async def test_dock_sequence_ends_quietly_on_unexpected_phase(config: RoombaConfig, clock: FakeClock) -> None:
    factory = RobotFactory()
    factory.setup = lambda robot: robot.phases.append("stuck")
    client = _client(config, factory, clock)

    session = await client.holder.acquire()
    await dock_when_stopped(client, session, poll_interval=0.01)

    assert _names(factory) == ["get_robot_state"]
    assert session.closed


@pytest.mark.asyncio
async def test_dock_failure_is_logged_and_releases_session(
    config: RoombaConfig,
    clock: FakeClock,
    caplog: pytest.LogCaptureFixture,
) -> None:
    factory = RobotFactory()

    def _setup(robot: object) -> None:
        robot.phases.append("stop")  # type: ignore[attr-defined]
        robot.failures["dock"] = RoombaCommandError("dock was not acknowledged in time", command="dock")  # type: ignore[attr-defined]

    factory.setup = _setup
    client = _client(config, factory, clock)

    session = await client.holder.acquire()
    with caplog.at_level(logging.WARNING, logger="pyroomba._client.commands"):
        await dock_when_stopped(client, session, poll_interval=0.01)

    assert "Robot failed to dock" in caplog.text
    assert session.closed


@pytest.mark.asyncio
@pytest.mark.parametrize(("docking", "command"), [(True, "dock"), (False, "pause")])
async def test_set_docking(config: RoombaConfig, clock: FakeClock, docking: bool, command: str) -> None:
    factory = RobotFactory(auto_report=COMPLETE_REPORT)
    client = _client(config, factory, clock)

    await client.set_docking(docking)
    await _drain(client)

    assert _names(factory) == [command]
    assert client.scheduler.armed
    await client.close()


@pytest.mark.asyncio
async def test_locate_sends_find(config: RoombaConfig, clock: FakeClock) -> None:
    factory = RobotFactory()
    client = _client(config, factory, clock)

    await client.locate()

    assert _names(factory) == ["find"]
    assert factory.last.ended


@pytest.mark.asyncio
async def test_command_failure_is_logged_and_reraised(
    config: RoombaConfig,
    clock: FakeClock,
    caplog: pytest.LogCaptureFixture,
) -> None:
    factory = RobotFactory()
    factory.setup = lambda robot: robot.failures.update(clean=RoombaTransportError("Disconnected"))
    client = _client(config, factory, clock)

    with caplog.at_level(logging.WARNING, logger="pyroomba._client.commands"):
        with pytest.raises(RoombaCommandError) as exc_info:
            await client.start()

    assert exc_info.value.command == "start"
    assert isinstance(exc_info.value.__cause__, RoombaTransportError)
    assert "Robot failed" in caplog.text
    # No refresh was requested for a failed command.
    assert not client.scheduler.armed
    await client.close()


@pytest.mark.asyncio
async def test_connection_failure_propagates_from_commands(config: RoombaConfig, clock: FakeClock) -> None:
    factory = RobotFactory([RoombaTransportError("Connection refused: bad user name or password")])
    client = _client(config, factory, clock)

    with pytest.raises(RoombaTransportError):
        await client.locate()


@pytest.mark.asyncio
async def test_identify_logs_instead_of_raising(
    config: RoombaConfig,
    clock: FakeClock,
    caplog: pytest.LogCaptureFixture,
) -> None:
    factory = RobotFactory()
    factory.setup = lambda robot: robot.failures.update(find=RoombaCommandError("find failed", command="find"))
    client = _client(config, factory, clock)

    with caplog.at_level(logging.WARNING, logger="pyroomba._client.commands"):
        await client.identify()

    assert "failed to identify" in caplog.text


@pytest.mark.asyncio
async def test_paused_command_path_uses_cached_phase(config: RoombaConfig, clock: FakeClock) -> None:
    factory = RobotFactory(auto_report=COMPLETE_REPORT)
    client = _client(config, factory, clock)
    client.cache.merge(StatusSnapshot(phase=MissionPhase.RUN, paused=False), fresh=False)

    await client.start()
    await _drain(client)

    assert _names(factory) == ["clean"]
    await client.close()
