"""Internal read operations for :class:`pyroomba.client.RoombaClient`.

Accessors go through the status cache and return ``NO_VALUE`` when the
robot could not be reached or never reported the field.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pydantic import ValidationError

from pyroomba._cache import NoValue
from pyroomba._client.commands import _guarded
from pyroomba._constants import LAST_COMMAND_FIELD, LOW_BATTERY_THRESHOLD
from pyroomba.exceptions import RoombaCommandError
from pyroomba.models.mission import RoomMission
from pyroomba.models.status import MissionPhase, StatusSnapshot

if TYPE_CHECKING:
    from pyroomba.client import RoombaClient

_logger = logging.getLogger(__name__)


def _low_battery(snapshot: StatusSnapshot) -> bool | None:
    if snapshot.battery_level is None:
        return None
    return snapshot.battery_level <= LOW_BATTERY_THRESHOLD


def _docked(snapshot: StatusSnapshot) -> bool | None:
    if snapshot.phase is None:
        return None
    return snapshot.phase is MissionPhase.CHARGE


async def running(client: RoombaClient) -> bool | NoValue:
    return await client.cache.read(lambda snapshot: snapshot.running)


async def battery_level(client: RoombaClient) -> int | NoValue:
    return await client.cache.read(lambda snapshot: snapshot.battery_level)


async def charging(client: RoombaClient) -> bool | NoValue:
    return await client.cache.read(lambda snapshot: snapshot.charging)


async def low_battery(client: RoombaClient) -> bool | NoValue:
    return await client.cache.read(_low_battery)


async def bin_full(client: RoombaClient) -> bool | NoValue:
    return await client.cache.read(lambda snapshot: snapshot.bin_full)


async def docked(client: RoombaClient) -> bool | NoValue:
    return await client.cache.read(_docked)


async def docking(client: RoombaClient) -> bool | NoValue:
    return await client.cache.read(lambda snapshot: snapshot.docking)


async def last_command(client: RoombaClient) -> RoomMission | None:
    """Read the last command live and return it as a room mission.

    Returns ``None`` when the last command did not target rooms.
    """
    async with client.holder.borrow() as session:
        state = await _guarded("getRobotState", session.robot.get_robot_state([LAST_COMMAND_FIELD]))

    raw = state.get(LAST_COMMAND_FIELD)
    _logger.debug("Last command: %s", raw)
    if not isinstance(raw, dict) or not raw.get("pmap_id"):
        return None
    try:
        return RoomMission.model_validate(raw)
    except ValidationError as exc:
        raise RoombaCommandError(f"Unexpected {LAST_COMMAND_FIELD} payload: {exc}", command="getRobotState") from exc
