"""sensorrelay - Async relay between an environmental sensor, LINE chat and a completion model."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("sensorrelay")
except PackageNotFoundError:
    __version__ = "0+local"

from sensorrelay._cache import ResponseCache, build_fingerprint
from sensorrelay._ratelimit import RateLimiter, min_gap_ms
from sensorrelay._retry import RetryPolicy, parse_retry_after
from sensorrelay.config import RelayConfig
from sensorrelay.context import RelayContext
from sensorrelay.dedup import Admission, DedupGuard
from sensorrelay.exceptions import (
    ChatTransportError,
    DuplicateDeliveryError,
    PersistenceError,
    RateLimiterClosedError,
    RelayConfigError,
    RelayError,
    SensorValidationError,
    UpstreamError,
    UpstreamThrottledError,
    UpstreamUnavailableError,
)
from sensorrelay.models import (
    ChatEvent,
    OtherMessage,
    PendingReply,
    SensorReading,
    TextMessage,
    UserRecord,
)
from sensorrelay.orchestrator import CompletionOrchestrator
from sensorrelay.processor import EventProcessor, Outcome
from sensorrelay.reporter import ReportResult, StatusReporter
from sensorrelay.state import SensorState
from sensorrelay.store import SQLiteStore, Store

__all__ = [
    "__version__",
    "Admission",
    "ChatEvent",
    "ChatTransportError",
    "CompletionOrchestrator",
    "DedupGuard",
    "DuplicateDeliveryError",
    "EventProcessor",
    "OtherMessage",
    "Outcome",
    "PendingReply",
    "PersistenceError",
    "RateLimiter",
    "RateLimiterClosedError",
    "RelayConfig",
    "RelayConfigError",
    "RelayContext",
    "RelayError",
    "ReportResult",
    "ResponseCache",
    "RetryPolicy",
    "SQLiteStore",
    "SensorReading",
    "SensorState",
    "SensorValidationError",
    "StatusReporter",
    "Store",
    "TextMessage",
    "UpstreamError",
    "UpstreamThrottledError",
    "UpstreamUnavailableError",
    "UserRecord",
    "build_fingerprint",
    "min_gap_ms",
    "parse_retry_after",
]
