# services/dedup.py
"""Short-window suppression of repeated identical events."""

import logging
import time
from typing import Callable, Optional

from killfeed.config.settings import DUPLICATE_THRESHOLD_MS
from killfeed.services.events import GameEvent

logger = logging.getLogger(__name__)


def monotonic_ms() -> int:
    return int(time.monotonic() * 1000)


class EventDeduplicator:
    """
    Suppress an event if an identical one was emitted within the window.

    Keys always include the tenant, so the same player name on two servers
    never suppresses across them. A suppressed hit does not extend the window.
    """

    def __init__(self, threshold_ms: int = DUPLICATE_THRESHOLD_MS,
                 clock: Optional[Callable[[], int]] = None):
        self.threshold_ms = threshold_ms
        self._clock = clock or monotonic_ms
        self._last_emitted: dict[tuple, int] = {}
        self._last_prune = 0
        self.suppressed_count = 0

    def should_suppress(self, event: GameEvent) -> bool:
        now = self._clock()
        self._prune(now)

        key = event.dedup_key()
        last = self._last_emitted.get(key)
        if last is not None and now - last < self.threshold_ms:
            self.suppressed_count += 1
            logger.debug(f"[{event.tenant}] Suppressed duplicate {event.event_type.value} event")
            return True

        self._last_emitted[key] = now
        return False

    def _prune(self, now: int) -> None:
        # At most once per window
        if now - self._last_prune < self.threshold_ms:
            return
        self._last_prune = now
        stale = [k for k, t in self._last_emitted.items() if now - t >= self.threshold_ms]
        for key in stale:
            del self._last_emitted[key]

    def clear(self) -> None:
        self._last_emitted.clear()

    def __len__(self) -> int:
        return len(self._last_emitted)
