"""Base model for LINE webhook payloads.

Every webhook model inherits from :class:`LineBaseModel` which
provides:

* ``alias_generator=to_camel`` so camelCase webhook keys map
  automatically to snake_case fields.
* A ``model_validator(mode="before")`` that drops ``None`` and blank
  strings so the field default is used.
* A ``raw`` dict that captures the original payload.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

# Threshold to distinguish seconds from milliseconds.
_MS_THRESHOLD = 1_000_000_000_000


def parse_epoch(value: Any) -> datetime | None:
    """Convert an epoch timestamp (seconds **or** milliseconds) to a UTC datetime."""
    if value is None:
        return value
    if isinstance(value, datetime):
        return value
    ts = int(value)
    if ts >= _MS_THRESHOLD:
        ts = ts // 1000
    return datetime.fromtimestamp(ts, tz=UTC)


EpochTimestamp = Annotated[datetime | None, BeforeValidator(parse_epoch)]
"""Annotated type that coerces epoch ints (seconds or ms) to UTC datetimes."""


class LineBaseModel(BaseModel):
    """Base for LINE webhook models."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    raw: dict[str, Any] = Field(default_factory=dict)
    """Original webhook dict."""

    @model_validator(mode="before")
    @classmethod
    def _clean_values(cls, values: Any) -> Any:
        """Drop empty values and stash the raw payload."""
        if not isinstance(values, dict):
            return values
        original = dict(values)
        cleaned: dict[str, Any] = {}
        for key, value in original.items():
            if value is None:
                continue
            if isinstance(value, str) and not value.strip():
                continue
            cleaned[key] = value
        if "raw" not in values:
            cleaned["raw"] = original
        return cleaned
