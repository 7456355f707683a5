"""Base model and enum for Roomba shadow reports.

Every report model inherits from :class:`RoombaBaseModel` which provides:

* ``alias_generator=to_camel`` so the robot's camelCase keys
  (``batPct``, ``cleanMissionStatus``) map to snake_case fields.
* A ``model_validator(mode="before")`` that drops ``None`` values so the
  field default is used.
* A ``raw`` dict that captures the original fragment.

String enums inherit from :class:`RoombaEnum` which resolves unmapped
values to ``UNKNOWN`` instead of raising ``ValueError``.
"""

from __future__ import annotations

import enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class RoombaEnum(enum.StrEnum):
    """Base for robot-reported string enums.

    Every subclass **must** define ``UNKNOWN``.
    """

    @classmethod
    def _missing_(cls, value: object) -> RoombaEnum:
        unknown: RoombaEnum = cls.UNKNOWN  # type: ignore[attr-defined]
        return unknown


class RoombaBaseModel(BaseModel):
    """Base for models parsed from the robot's reported state."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    raw: dict[str, Any] = Field(default_factory=dict)
    """Original reported fragment."""

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, values: Any) -> Any:
        """Drop ``None`` values and stash the raw fragment."""
        if not isinstance(values, dict):
            return values
        cleaned = {key: value for key, value in values.items() if value is not None}
        if "raw" not in values:
            cleaned["raw"] = dict(values)
        return cleaned
