"""Internal command operations for :class:`pyroomba.client.RoombaClient`.

These functions keep `client.py` small without changing the public API.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Awaitable
from typing import TYPE_CHECKING, Any, TypeVar

from pyroomba._constants import DOCK_POLL_INTERVAL, MISSION_STATUS_FIELD
from pyroomba._redact import format_duration
from pyroomba._transport import RobotTransport
from pyroomba.config import CleanBehaviour, StopBehaviour
from pyroomba.exceptions import RoombaCommandError, RoombaError
from pyroomba.models.status import MissionPhase, MissionStatus
from pyroomba.session import RobotSession

if TYPE_CHECKING:
    from pyroomba.client import RoombaClient

_logger = logging.getLogger(__name__)

T = TypeVar("T")


async def _guarded(command: str, call: Awaitable[T]) -> T:
    """Await a transport call, logging failures and raising them as command errors."""
    try:
        return await call
    except RoombaCommandError as exc:
        _logger.warning("Robot failed: %s", exc)
        raise
    except RoombaError as exc:
        _logger.warning("Robot failed: %s", exc)
        raise RoombaCommandError(str(exc), command=command) from exc


def _parse_phase(state: dict[str, Any]) -> MissionPhase | None:
    raw = state.get(MISSION_STATUS_FIELD)
    if not isinstance(raw, dict):
        return None
    return MissionStatus.model_validate(raw).phase


async def read_phase(robot: RobotTransport) -> MissionPhase | None:
    """Ask the robot for its current mission phase, bypassing the cache."""
    state = await _guarded("getRobotState", robot.get_robot_state([MISSION_STATUS_FIELD]))
    return _parse_phase(state)


async def start(client: RoombaClient) -> None:
    _logger.info("Starting robot")
    config = client.config
    async with client.holder.borrow() as session:
        robot = session.robot
        if client.cache.snapshot.paused:
            await _guarded("resume", robot.resume())
            _logger.debug("Robot resumed")
        elif config.clean_behaviour is CleanBehaviour.ROOMS and config.mission is not None:
            await _guarded("start", robot.clean_room(config.mission))
            _logger.debug("Robot is cleaning your rooms")
        else:
            await _guarded("start", robot.clean())
            _logger.debug("Robot is running")
        client.scheduler.refresh_status_for_user(session)


async def stop(client: RoombaClient) -> None:
    _logger.info("Stopping robot")
    async with client.holder.borrow() as session:
        robot = session.robot
        phase = await read_phase(robot)

        try:
            if phase is MissionPhase.RUN:
                _logger.debug("Robot is pausing")
                await _guarded("pause", robot.pause())
                if client.config.stop_behaviour is StopBehaviour.HOME:
                    _logger.debug("Robot paused, returning to dock")
                    client._spawn(
                        dock_when_stopped(
                            client,
                            client.holder.retain(session),
                            poll_interval=client._dock_poll_interval,
                        )
                    )
                else:
                    _logger.debug("Robot is paused")
            elif phase is MissionPhase.DOCK_POST_MISSION:
                _logger.debug("Robot is docking")
                await _guarded("pause", robot.pause())
                _logger.debug("Robot paused")
            elif phase is MissionPhase.CHARGE:
                _logger.debug("Robot is already docked")
            else:
                _logger.debug("Robot is not running")
        finally:
            # Refresh even when the pause failed.
            client.scheduler.refresh_status_for_user(session)


async def set_docking(client: RoombaClient, docking: bool) -> None:
    _logger.debug("Setting docking state to %s", docking)
    async with client.holder.borrow() as session:
        if docking:
            await _guarded("dock", session.robot.dock())
            _logger.debug("Robot is docking")
        else:
            await _guarded("pause", session.robot.pause())
            _logger.debug("Robot is paused")
        client.scheduler.refresh_status_for_user(session)


async def locate(client: RoombaClient) -> None:
    _logger.debug("Locating robot")
    async with client.holder.borrow() as session:
        await _guarded("find", session.robot.find())


async def identify(client: RoombaClient) -> None:
    """Best-effort :func:`locate` for host identify hooks."""
    try:
        await locate(client)
    except RoombaError as exc:
        _logger.warning("Robot failed to identify itself: %s", exc)


class DockStep(enum.Enum):
    CHECK = "check"
    WAIT = "wait"
    DOCK = "dock"
    DONE = "done"


async def dock_when_stopped(
    client: RoombaClient,
    session: RobotSession,
    *,
    poll_interval: float = DOCK_POLL_INTERVAL,
) -> None:
    """Send the robot home once its pause has taken effect.

    *session* must already be retained for this task; it is released when
    the sequence ends.  A robot still running is checked again every
    *poll_interval* seconds.  Failures end the sequence with a warning.
    """
    robot = session.robot
    step = DockStep.CHECK
    try:
        while step is not DockStep.DONE:
            if step is DockStep.CHECK:
                phase = await read_phase(robot)
                if phase is MissionPhase.STOP:
                    step = DockStep.DOCK
                elif phase is MissionPhase.RUN:
                    _logger.debug("Robot is still running. Will check again in %s", format_duration(poll_interval))
                    step = DockStep.WAIT
                else:
                    _logger.debug("Robot is in unexpected state: %s", phase)
                    step = DockStep.DONE
            elif step is DockStep.WAIT:
                await asyncio.sleep(poll_interval)
                _logger.debug("Trying to dock again")
                step = DockStep.CHECK
            elif step is DockStep.DOCK:
                _logger.debug("Robot has stopped, issuing dock request")
                await _guarded("dock", robot.dock())
                _logger.debug("Robot docking")
                client.scheduler.refresh_status_for_user(session)
                step = DockStep.DONE
    except RoombaError as exc:
        _logger.warning("Robot failed to dock: %s", exc)
    finally:
        client.holder.release(session)
