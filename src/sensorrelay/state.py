"""Latest sensor reading, owned by the relay context."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from sensorrelay.models.sensor import SensorReading

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SensorState:
    """Holds one reading, replaced wholesale on every ingest; no history."""

    def __init__(self, *, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock
        self._reading: SensorReading | None = None
        self._updated_at: datetime | None = None

    @property
    def latest(self) -> SensorReading | None:
        return self._reading

    @property
    def updated_at(self) -> datetime | None:
        return self._updated_at

    def ingest(self, payload: Any) -> SensorReading:
        """Validate *payload* and make it the current reading.

        Raises
        ------
        SensorValidationError
            If the payload is incomplete; the current reading is kept.
        """
        reading = SensorReading.from_payload(payload)
        self.replace(reading)
        return reading

    def replace(self, reading: SensorReading) -> None:
        self._reading = reading
        self._updated_at = self._clock()
        _logger.debug(
            "Sensor reading updated light=%s temperature=%s humidity=%s",
            reading.light,
            reading.temperature,
            reading.humidity,
        )
