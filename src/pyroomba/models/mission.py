"""Room-targeted cleaning missions."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Region(BaseModel):
    """A room (``rid``) or zone (``zid``) of a persistent map."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    region_id: str
    type: str = "rid"


class RoomMission(BaseModel):
    """Arguments of a ``start`` command targeting specific rooms.

    The robot echoes these under ``lastCommand`` after a room clean started
    from the iRobot app, which is the usual way to obtain them.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    pmap_id: str
    regions: list[Region] = Field(default_factory=list)
    user_pmapv_id: str | None = None
    ordered: int = 1

    def to_command_args(self) -> dict[str, Any]:
        """Extra keys merged into the ``start`` command payload."""
        return self.model_dump(exclude_none=True)
