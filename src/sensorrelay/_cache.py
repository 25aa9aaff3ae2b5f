"""Short-lived cache of model answers keyed by question and conditions."""

from __future__ import annotations

import logging
import math
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass

from sensorrelay.models.events import normalize_text
from sensorrelay.models.sensor import SensorReading

_logger = logging.getLogger(__name__)

_DELIMITER = "|"


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def build_fingerprint(question: str, reading: SensorReading) -> str:
    """Cache key: normalised question plus readings rounded to integers.

    Near-identical questions asked under near-identical conditions share
    one slot.
    """
    return _DELIMITER.join(
        (
            normalize_text(question).casefold(),
            str(_round_half_up(reading.light)),
            str(_round_half_up(reading.temperature)),
            str(_round_half_up(reading.humidity)),
        )
    )


@dataclass
class CacheEntry:
    """One cached answer."""

    fingerprint: str
    value: str
    inserted_at: float


class ResponseCache:
    """Answers expire lazily: a read past ``ttl`` is a miss and purges the entry."""

    def __init__(
        self,
        *,
        ttl: float = 120.0,
        max_entries: int = 256,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl
        self._max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def ttl(self) -> float:
        return self._ttl

    def _is_expired(self, entry: CacheEntry, now: float) -> bool:
        return (now - entry.inserted_at) >= self._ttl

    def get(self, fingerprint: str) -> str | None:
        entry = self._entries.get(fingerprint)
        if entry is None:
            return None
        if self._is_expired(entry, self._clock()):
            del self._entries[fingerprint]
            _logger.debug("Cache entry expired fingerprint=%s", fingerprint)
            return None
        return entry.value

    def put(self, fingerprint: str, value: str) -> None:
        self._entries[fingerprint] = CacheEntry(fingerprint=fingerprint, value=value, inserted_at=self._clock())
        self._entries.move_to_end(fingerprint)
        while self._max_entries > 0 and len(self._entries) > self._max_entries:
            evicted, _ = self._entries.popitem(last=False)
            _logger.debug("Cache full, evicted fingerprint=%s", evicted)

    def purge_expired(self) -> int:
        """Drop every expired entry; returns how many were removed."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if self._is_expired(entry, now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()
