"""Status report pushed to every known chat user.

Scheduling is external (``POST /report`` from a cron or platform
scheduler); this module only builds and delivers one report.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from sensorrelay._constants import REPORT_QUESTION
from sensorrelay._redact import mask_token
from sensorrelay._transport import ChatTransport
from sensorrelay.exceptions import ChatTransportError, RateLimiterClosedError, UpstreamError
from sensorrelay.formatting import humidity_status, light_status, status_report, temperature_status
from sensorrelay.models.sensor import SensorReading
from sensorrelay.orchestrator import CompletionOrchestrator
from sensorrelay.state import SensorState
from sensorrelay.store import Store

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def fallback_analysis(reading: SensorReading) -> str:
    """Templated analysis used when the model is unavailable."""
    return (
        f"{light_status(reading.light)}, {temperature_status(reading.temperature)}, "
        f"{humidity_status(reading.humidity)}"
    )


@dataclass(frozen=True, slots=True)
class ReportResult:
    recipients: int
    delivered: int
    used_model: bool
    message: str


class StatusReporter:
    def __init__(
        self,
        *,
        state: SensorState,
        store: Store,
        chat: ChatTransport,
        orchestrator: CompletionOrchestrator,
        time_zone: str = "Asia/Bangkok",
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._state = state
        self._store = store
        self._chat = chat
        self._orchestrator = orchestrator
        self._time_zone = time_zone
        self._clock = clock

    async def broadcast(self) -> ReportResult | None:
        """Build one report and push it to all users.

        Returns ``None`` when no reading has been ingested yet.

        Raises
        ------
        PersistenceError
            If the recipient list cannot be loaded.
        """
        reading = self._state.latest
        if reading is None:
            _logger.info("Skipping status report: no sensor reading yet")
            return None

        try:
            analysis = await self._orchestrator.answer(REPORT_QUESTION, reading)
        except (UpstreamError, RateLimiterClosedError):
            _logger.warning("Model unavailable for status report, using template", exc_info=True)
            analysis = ""
        used_model = bool(analysis)
        if not used_model:
            analysis = fallback_analysis(reading)

        message = status_report(reading, analysis, self._clock(), self._time_zone)
        users = await self._store.list_users()

        delivered = 0
        for user in users:
            try:
                await self._chat.push(user.user_id, message)
            except ChatTransportError:
                _logger.warning("Status report push failed user=%s", mask_token(user.user_id), exc_info=True)
                continue
            delivered += 1

        _logger.info("Status report delivered to %d/%d users", delivered, len(users))
        return ReportResult(recipients=len(users), delivered=delivered, used_model=used_model, message=message)
