"""At-most-once admission of inbound chat events, keyed by reply token."""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass

from sensorrelay._constants import MSG_NO_TEXT
from sensorrelay._redact import mask_token
from sensorrelay.exceptions import DuplicateDeliveryError, PersistenceError
from sensorrelay.models.events import ChatEvent, TextMessage
from sensorrelay.models.records import PendingReply
from sensorrelay.store import Store

_logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Admission:
    """Outcome of :meth:`DedupGuard.admit`.

    ``record`` is the created pending reply when admitted, else ``None``.
    """

    admitted: bool
    record: PendingReply | None = None


class DedupGuard:
    """Admit each delivery token once.

    The persistent pending-reply record is the source of truth across
    restarts; its UNIQUE token makes admission an atomic insert-if-absent.
    Tokens whose record was already cleared are remembered in-process for
    ``handled_ttl`` seconds so a late re-delivery is still rejected.
    """

    def __init__(
        self,
        store: Store,
        *,
        handled_ttl: float = 600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._handled_ttl = handled_ttl
        self._clock = clock
        self._handled: OrderedDict[str, float] = OrderedDict()

    def _prune(self, now: float) -> None:
        while self._handled:
            token, handled_at = next(iter(self._handled.items()))
            if now - handled_at < self._handled_ttl:
                return
            del self._handled[token]

    def recently_handled(self, reply_token: str) -> bool:
        self._prune(self._clock())
        return reply_token in self._handled

    async def admit(self, event: ChatEvent) -> Admission:
        """Try to admit *event*; creates its pending reply on success.

        Raises
        ------
        PersistenceError
            If the store cannot be reached.  Nothing was admitted.
        """
        token = event.reply_token
        if self.recently_handled(token):
            _logger.debug("Rejecting re-delivered token=%s (recently handled)", mask_token(token))
            return Admission(admitted=False)

        if await self._store.find_pending_by_token(token) is not None:
            _logger.debug("Rejecting duplicate token=%s (pending record exists)", mask_token(token))
            return Admission(admitted=False)

        text = event.text if isinstance(event, TextMessage) else ""
        record = PendingReply(
            reply_token=token,
            user_id=event.user_id,
            message_type=event.message_type,
            text=text or MSG_NO_TEXT,
        )
        try:
            created = await self._store.create_pending(record)
        except DuplicateDeliveryError:
            _logger.debug("Rejecting duplicate token=%s (lost insert race)", mask_token(token))
            return Admission(admitted=False)

        _logger.debug("Admitted token=%s pending_id=%s", mask_token(token), created.id)
        return Admission(admitted=True, record=created)

    async def release(self, record: PendingReply) -> bool:
        """Clear the pending record: the token is now fully handled.

        A failed delete is logged and reported as ``False``; it is not
        retried here.
        """
        now = self._clock()
        self._prune(now)
        self._handled[record.reply_token] = now
        self._handled.move_to_end(record.reply_token)

        if record.id is None:
            return False
        try:
            deleted = await self._store.delete_pending(record.id)
        except PersistenceError:
            _logger.warning(
                "Could not clear pending reply id=%s token=%s; a re-delivery after restart may be reprocessed",
                record.id,
                mask_token(record.reply_token),
                exc_info=True,
            )
            return False
        if not deleted:
            _logger.debug("Pending reply id=%s was already cleared", record.id)
        return deleted
