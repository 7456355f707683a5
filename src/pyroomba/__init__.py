"""pyroomba - Async Python client for iRobot Roomba robots on the local network."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pyroomba")
except PackageNotFoundError:
    __version__ = "0+local"
from pyroomba._cache import NO_VALUE, StatusCache
from pyroomba._mqtt import LocalRobot
from pyroomba.cipher import CipherDecision, CipherNegotiator
from pyroomba.client import RoombaClient
from pyroomba.config import CleanBehaviour, DeviceIdentity, RoombaConfig, StopBehaviour
from pyroomba.exceptions import (
    RoombaCommandError,
    RoombaConfigError,
    RoombaConnectTimeoutError,
    RoombaError,
    RoombaRefreshTimeoutError,
    RoombaTransportError,
    RoombaTransportFatalError,
    RoombaTransportRejectedError,
)
from pyroomba.models import MissionPhase, Region, RoomMission, StatusSnapshot
from pyroomba.refresh import StateRefresher
from pyroomba.scheduler import PollScheduler
from pyroomba.session import ConnectionPhase, RobotSession, SessionHolder

__all__ = [
    "__version__",
    "NO_VALUE",
    "CipherDecision",
    "CipherNegotiator",
    "CleanBehaviour",
    "ConnectionPhase",
    "DeviceIdentity",
    "LocalRobot",
    "MissionPhase",
    "PollScheduler",
    "Region",
    "RobotSession",
    "RoomMission",
    "RoombaClient",
    "RoombaCommandError",
    "RoombaConfig",
    "RoombaConfigError",
    "RoombaConnectTimeoutError",
    "RoombaError",
    "RoombaRefreshTimeoutError",
    "RoombaTransportError",
    "RoombaTransportFatalError",
    "RoombaTransportRejectedError",
    "SessionHolder",
    "StateRefresher",
    "StatusCache",
    "StatusSnapshot",
    "StopBehaviour",
]
