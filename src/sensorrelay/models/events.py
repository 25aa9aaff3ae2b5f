"""Inbound chat events.

Webhook payloads are loosely typed.  They are parsed once, at the route
boundary, into the closed :data:`ChatEvent` variant; business logic only
ever sees :class:`TextMessage` or :class:`OtherMessage`.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from sensorrelay.models._base import EpochTimestamp, LineBaseModel

_logger = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """Collapse runs of whitespace and strip the ends."""
    return _WHITESPACE_RE.sub(" ", text).strip()


class _EventSource(LineBaseModel):
    type: str = "user"
    user_id: str | None = None


class _EventMessage(LineBaseModel):
    type: str = "unknown"
    id: str | None = None
    text: str | None = None


class _DeliveryContext(LineBaseModel):
    is_redelivery: bool = False


class _WebhookEvent(LineBaseModel):
    type: str = "unknown"
    reply_token: str | None = None
    source: _EventSource | None = None
    message: _EventMessage | None = None
    webhook_event_id: str | None = None
    delivery_context: _DeliveryContext | None = None
    timestamp: EpochTimestamp = None


class _ChatEventBase(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    reply_token: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    webhook_event_id: str | None = None
    is_redelivery: bool = False


class TextMessage(_ChatEventBase):
    """A text message typed by the user."""

    text: str = ""

    @property
    def message_type(self) -> str:
        return "text"

    @property
    def normalized_text(self) -> str:
        return normalize_text(self.text)


class OtherMessage(_ChatEventBase):
    """Any non-text message (sticker, image, location, ...)."""

    message_type: str = "unknown"


ChatEvent = TextMessage | OtherMessage


def parse_event(raw: Any) -> ChatEvent | None:
    """Parse one webhook event; ``None`` when it is not a routable message."""
    if not isinstance(raw, dict):
        return None
    try:
        event = _WebhookEvent.model_validate(raw)
    except ValidationError:
        _logger.debug("Dropping malformed webhook event", exc_info=True)
        return None

    if event.type != "message" or event.message is None:
        return None
    user_id = event.source.user_id if event.source else None
    if not event.reply_token or not user_id:
        return None

    common: dict[str, Any] = {
        "reply_token": event.reply_token,
        "user_id": user_id,
        "webhook_event_id": event.webhook_event_id,
        "is_redelivery": bool(event.delivery_context and event.delivery_context.is_redelivery),
    }
    if event.message.type == "text":
        return TextMessage(text=(event.message.text or "").strip(), **common)
    return OtherMessage(message_type=event.message.type, **common)


def parse_webhook(body: Any) -> list[ChatEvent]:
    """Parse a webhook body (``{"events": [...]}``) into chat events."""
    if not isinstance(body, dict):
        return []
    raw_events = body.get("events")
    if not isinstance(raw_events, list):
        return []

    events: list[ChatEvent] = []
    for raw in raw_events:
        parsed = parse_event(raw)
        if parsed is None:
            _logger.debug("Skipping non-message webhook event type=%s", raw.get("type") if isinstance(raw, dict) else None)
            continue
        events.append(parsed)
    return events
