"""Data models for Roomba state reports."""

from pyroomba.models._base import RoombaBaseModel, RoombaEnum
from pyroomba.models.mission import Region, RoomMission
from pyroomba.models.status import BinStatus, MissionPhase, MissionStatus, RobotReport, StatusSnapshot

__all__ = [
    "BinStatus",
    "MissionPhase",
    "MissionStatus",
    "Region",
    "RobotReport",
    "RoomMission",
    "RoombaBaseModel",
    "RoombaEnum",
    "StatusSnapshot",
]
