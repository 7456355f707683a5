"""Client configuration for pyroomba."""

from __future__ import annotations

import dataclasses
import enum
import json
import os
from typing import Any

from pydantic import ValidationError

from pyroomba._constants import DEFAULT_IDLE_POLL_INTERVAL
from pyroomba.exceptions import RoombaConfigError
from pyroomba.models.mission import RoomMission


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


class CleanBehaviour(enum.StrEnum):
    """What ``start`` does when the robot is not paused."""

    EVERYWHERE = "everywhere"
    ROOMS = "rooms"


class StopBehaviour(enum.StrEnum):
    """What ``stop`` does after pausing a running robot."""

    HOME = "home"
    PAUSE = "pause"


@dataclasses.dataclass(frozen=True)
class DeviceIdentity:
    """Credentials and address of a single robot.

    Supplied by discovery/password retrieval; never mutated.
    """

    blid: str
    password: str
    address: str

    def __repr__(self) -> str:
        return f"DeviceIdentity(blid={self.blid!r}, password='<redacted>', address={self.address!r})"


@dataclasses.dataclass(frozen=True)
class RoombaConfig:
    """Client configuration.

    Parameters
    ----------
    identity : DeviceIdentity
        Robot blid, password and IP address.
    name : str
        Display name handed to the host.
    model : str
        Robot model, informational only.
    serial_number : str
        Robot serial number, informational only.
    clean_behaviour : CleanBehaviour
        ``everywhere`` runs a whole-home clean, ``rooms`` replays *mission*.
    mission : RoomMission or None
        Room mission to start when *clean_behaviour* is ``rooms``.  Usually
        taken from :meth:`pyroomba.RoombaClient.last_command`.
    stop_behaviour : StopBehaviour
        ``home`` sends the robot back to its dock once it has stopped,
        ``pause`` leaves it where it is.
    idle_poll_interval : float
        Seconds between background refreshes.  Defaults to 15 minutes.
    dock_contact_sensor, running_contact_sensor, bin_contact_sensor, docking_contact_sensor, home_switch : bool
        Which optional accessories the host should expose.  Not interpreted
        by this library.
    """

    identity: DeviceIdentity
    name: str = "Roomba"
    model: str = ""
    serial_number: str = ""
    clean_behaviour: CleanBehaviour = CleanBehaviour.EVERYWHERE
    mission: RoomMission | None = None
    stop_behaviour: StopBehaviour = StopBehaviour.HOME
    idle_poll_interval: float = DEFAULT_IDLE_POLL_INTERVAL
    dock_contact_sensor: bool = True
    running_contact_sensor: bool = False
    bin_contact_sensor: bool = False
    docking_contact_sensor: bool = False
    home_switch: bool = False

    def __post_init__(self) -> None:
        for field_name in ("blid", "password", "address"):
            if not getattr(self.identity, field_name):
                raise RoombaConfigError(f"identity.{field_name} is required")

        try:
            object.__setattr__(self, "clean_behaviour", CleanBehaviour(self.clean_behaviour))
            object.__setattr__(self, "stop_behaviour", StopBehaviour(self.stop_behaviour))
        except ValueError as exc:
            raise RoombaConfigError(str(exc)) from exc

        if isinstance(self.mission, (dict, str)):
            object.__setattr__(self, "mission", _parse_mission(self.mission))

        if self.clean_behaviour == CleanBehaviour.ROOMS and self.mission is None:
            raise RoombaConfigError("clean_behaviour 'rooms' requires a mission")
        if self.idle_poll_interval <= 0:
            raise RoombaConfigError(f"idle_poll_interval must be positive, got {self.idle_poll_interval}")

    @classmethod
    def from_env(cls, **overrides: Any) -> RoombaConfig:
        """Create configuration from environment variables.

        Reads ``ROOMBA_BLID``, ``ROOMBA_PASSWORD``, ``ROOMBA_ADDRESS`` and
        optional ``ROOMBA_*`` variables.  ``ROOMBA_IDLE_WATCH_INTERVAL`` is in
        minutes and ``ROOMBA_MISSION`` is a JSON object.  Explicit keyword
        arguments override environment values.
        """
        env = os.environ

        identity_kwargs: dict[str, str] = {
            "blid": env.get("ROOMBA_BLID", ""),
            "password": env.get("ROOMBA_PASSWORD", ""),
            "address": env.get("ROOMBA_ADDRESS", ""),
        }
        identity_overrides = overrides.pop("identity", None)
        if isinstance(identity_overrides, dict):
            identity_kwargs.update(identity_overrides)
        elif isinstance(identity_overrides, DeviceIdentity):
            identity_kwargs = dataclasses.asdict(identity_overrides)

        _ENV_CONFIG_MAP = {
            "ROOMBA_NAME": "name",
            "ROOMBA_MODEL": "model",
            "ROOMBA_SERIAL_NUMBER": "serial_number",
            "ROOMBA_CLEAN_BEHAVIOUR": "clean_behaviour",
            "ROOMBA_STOP_BEHAVIOUR": "stop_behaviour",
            "ROOMBA_MISSION": "mission",
        }
        config_kwargs: dict[str, Any] = {"identity": DeviceIdentity(**identity_kwargs)}
        for env_key, field_name in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        interval_env = env.get("ROOMBA_IDLE_WATCH_INTERVAL")
        if interval_env is not None and "idle_poll_interval" not in overrides:
            try:
                config_kwargs["idle_poll_interval"] = float(interval_env) * 60.0
            except ValueError as exc:
                raise RoombaConfigError(f"ROOMBA_IDLE_WATCH_INTERVAL is not a number: {interval_env!r}") from exc

        _ENV_TOGGLE_MAP = {
            "ROOMBA_DOCK_CONTACT_SENSOR": ("dock_contact_sensor", True),
            "ROOMBA_RUNNING_CONTACT_SENSOR": ("running_contact_sensor", False),
            "ROOMBA_BIN_CONTACT_SENSOR": ("bin_contact_sensor", False),
            "ROOMBA_DOCKING_CONTACT_SENSOR": ("docking_contact_sensor", False),
            "ROOMBA_HOME_SWITCH": ("home_switch", False),
        }
        for env_key, (field_name, default) in _ENV_TOGGLE_MAP.items():
            if field_name not in overrides:
                config_kwargs[field_name] = _env_bool(env.get(env_key), default)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)


def _parse_mission(value: dict[str, Any] | str) -> RoomMission:
    try:
        raw = json.loads(value) if isinstance(value, str) else value
        return RoomMission.model_validate(raw)
    except (ValueError, ValidationError) as exc:
        raise RoombaConfigError(f"Invalid mission: {exc}") from exc
