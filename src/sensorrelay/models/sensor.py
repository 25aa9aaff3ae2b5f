"""Environmental sensor reading model."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from sensorrelay.exceptions import SensorValidationError

_REQUIRED_FIELDS: dict[str, tuple[str, ...]] = {
    "light": ("light",),
    "temperature": ("temperature", "temp"),
    "humidity": ("humidity",),
}


class SensorReading(BaseModel):
    """One reading from the environmental sensor.

    Parameters
    ----------
    light : float
        Illuminance in lux (``>= 0``).
    temperature : float
        Temperature in °C.  Accepts ``temp`` on input.
    humidity : float
        Relative humidity in percent (``0``-``100``).
    """

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        allow_inf_nan=False,
    )

    light: float = Field(ge=0)
    temperature: float = Field(validation_alias=AliasChoices("temperature", "temp"))
    humidity: float = Field(ge=0, le=100)

    @classmethod
    def from_payload(cls, payload: Any) -> SensorReading:
        """Validate an ingest payload.

        Raises
        ------
        SensorValidationError
            If a field is missing or not a finite number in range.
        """
        if not isinstance(payload, Mapping):
            raise SensorValidationError("sensor payload must be a JSON object")

        missing = tuple(
            name
            for name, keys in _REQUIRED_FIELDS.items()
            if all(payload.get(key) is None for key in keys)
        )
        if missing:
            raise SensorValidationError(
                f"missing sensor fields: {', '.join(missing)}",
                missing=missing,
            )
        try:
            return cls.model_validate(dict(payload))
        except ValidationError as exc:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
            raise SensorValidationError(f"invalid sensor fields: {fields}") from exc

    def to_payload(self) -> dict[str, float]:
        """Wire shape served by ``/latest`` (``temp`` key kept for device firmware)."""
        return {"light": self.light, "temp": self.temperature, "humidity": self.humidity}
