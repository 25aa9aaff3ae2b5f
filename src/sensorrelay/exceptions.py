"""Custom exception hierarchy for sensorrelay."""

from __future__ import annotations


class RelayError(Exception):
    """Base exception for all sensorrelay errors."""


class RelayConfigError(RelayError):
    """Invalid or missing configuration."""


class SensorValidationError(RelayError):
    """Sensor payload is incomplete or carries non-numeric values."""

    def __init__(self, message: str, *, missing: tuple[str, ...] = ()) -> None:
        self.missing = missing
        super().__init__(message)


class DuplicateDeliveryError(RelayError):
    """A pending reply already exists for this delivery token."""

    def __init__(self, message: str, *, reply_token: str = "") -> None:
        self.reply_token = reply_token
        super().__init__(message)


class RateLimiterClosedError(RelayError):
    """A call was scheduled on (or left pending in) a closed rate limiter."""


class UpstreamError(RelayError):
    """Completion service failure."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
    ) -> None:
        self.status_code = status_code
        super().__init__(message)


class UpstreamThrottledError(UpstreamError):
    """The completion service asked us to slow down (HTTP 429).

    ``retry_after_ms`` holds the server-supplied hint normalised to
    milliseconds, or ``None`` when the response carried no usable hint.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = 429,
        retry_after_ms: float | None = None,
    ) -> None:
        self.retry_after_ms = retry_after_ms
        super().__init__(message, status_code=status_code)


class UpstreamUnavailableError(UpstreamError):
    """The completion service could not produce an answer.

    Raised for non-throttling failures and when throttling retries are
    exhausted.
    """


class ChatTransportError(RelayError):
    """LINE reply/push failure (network, non-200, missing token)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class PersistenceError(RelayError):
    """Store operation failed or timed out."""
