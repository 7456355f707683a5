"""Reported robot state and the merged status snapshot."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict

from pyroomba.models._base import RoombaBaseModel, RoombaEnum


class MissionPhase(RoombaEnum):
    """``cleanMissionStatus.phase`` values."""

    UNKNOWN = "unknown"
    CHARGE = "charge"
    RUN = "run"
    STOP = "stop"
    PAUSE = "pause"
    STUCK = "stuck"
    EVAC = "evac"
    RECHARGE = "recharge"
    DOCK_MID_MISSION = "hmMidMsn"
    DOCK_POST_MISSION = "hmPostMsn"
    DOCK_USER = "hmUsrDock"


class MissionStatus(RoombaBaseModel):
    phase: MissionPhase | None = None
    cycle: str | None = None
    error: int | None = None
    not_ready: int | None = None


class BinStatus(RoombaBaseModel):
    present: bool | None = None
    full: bool | None = None


class RobotReport(RoombaBaseModel):
    """One ``state.reported`` fragment as published by the robot.

    Fragments are partial: any field may be missing.
    """

    bat_pct: int | None = None
    bin: BinStatus | None = None
    clean_mission_status: MissionStatus | None = None

    @property
    def phase(self) -> MissionPhase | None:
        if self.clean_mission_status is None:
            return None
        return self.clean_mission_status.phase


class StatusSnapshot(BaseModel):
    """Point-in-time view of the fields the client cares about.

    Every field stays ``None`` until it has been observed.  Snapshots are
    immutable; :meth:`merge` returns a new one.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    phase: MissionPhase | None = None
    running: bool | None = None
    paused: bool | None = None
    docking: bool | None = None
    charging: bool | None = None
    battery_level: int | None = None
    bin_full: bool | None = None

    @classmethod
    def from_report(cls, report: RobotReport | Mapping[str, Any]) -> StatusSnapshot:
        """Derive a snapshot from a (possibly partial) reported fragment."""
        if not isinstance(report, RobotReport):
            report = RobotReport.model_validate(dict(report))

        phase = report.phase
        phase_fields: dict[str, Any] = {}
        if phase is not None:
            phase_fields = {
                "phase": phase,
                "running": phase == MissionPhase.RUN,
                "paused": phase == MissionPhase.PAUSE,
                "docking": phase == MissionPhase.DOCK_POST_MISSION,
                "charging": phase == MissionPhase.CHARGE,
            }
        return cls(
            battery_level=report.bat_pct,
            bin_full=report.bin.full if report.bin is not None else None,
            **phase_fields,
        )

    @property
    def is_complete(self) -> bool:
        """Battery level, bin state and mission phase have all been observed."""
        return self.battery_level is not None and self.bin_full is not None and self.phase is not None

    def merge(self, newer: StatusSnapshot) -> StatusSnapshot:
        """Overlay the observed fields of *newer* onto this snapshot."""
        patch = newer.model_dump(exclude_none=True)
        if not patch:
            return self
        return self.model_copy(update=patch)
