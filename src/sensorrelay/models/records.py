"""Persistent records kept by the store."""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(UTC)


class UserRecord(BaseModel):
    """A chat user known to the relay; the broadcast recipient list."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    created_at: datetime = Field(default_factory=_utcnow)


class PendingReply(BaseModel):
    """A chat event admitted for processing but not yet answered.

    At most one record exists per ``reply_token``.  Deleting the record
    marks the token as fully handled.
    """

    model_config = ConfigDict(frozen=True)

    id: int | None = None
    reply_token: str
    user_id: str
    message_type: str
    text: str
    created_at: datetime = Field(default_factory=_utcnow)
