"""Data models for sensor readings, chat events and stored records."""

from sensorrelay.models._base import EpochTimestamp, LineBaseModel, parse_epoch
from sensorrelay.models.events import (
    ChatEvent,
    OtherMessage,
    TextMessage,
    normalize_text,
    parse_event,
    parse_webhook,
)
from sensorrelay.models.records import PendingReply, UserRecord
from sensorrelay.models.sensor import SensorReading

__all__ = [
    "ChatEvent",
    "EpochTimestamp",
    "LineBaseModel",
    "OtherMessage",
    "PendingReply",
    "SensorReading",
    "TextMessage",
    "UserRecord",
    "normalize_text",
    "parse_epoch",
    "parse_event",
    "parse_webhook",
]
