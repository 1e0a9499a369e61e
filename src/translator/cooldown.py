"""Cooldown cache that suppresses repeat translations of identical text."""

import logging
from typing import Dict, Optional

from pydantic import BaseModel

from common.clock import Clock

logger = logging.getLogger(__name__)


class CooldownEntry(BaseModel):
    """Last translation attempt for one normalized text."""

    text: str
    correlation_id: str
    dispatched_at: float
    output: Optional[str] = None

    @property
    def in_flight(self) -> bool:
        return self.output is None


class CooldownCache:
    """
    Remembers when each text was last dispatched and what it translated to.

    A lookup hits only while the entry is younger than the window, counted
    from the dispatch time. Entries of failed or aborted dispatches are
    evicted so the next occurrence of the text is translated again.
    """

    def __init__(self, window_seconds: float, clock: Clock):
        """
        Initialize the cache.

        Args:
            window_seconds: Cooldown window in seconds
            clock: Clock providing monotonic time
        """
        self.window_seconds = window_seconds
        self._clock = clock
        self._entries: Dict[str, CooldownEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def lookup(self, text: str) -> Optional[CooldownEntry]:
        """
        Find a live entry for text.

        Args:
            text: Normalized text

        Returns:
            The entry if text was dispatched within the window, None otherwise
        """
        entry = self._entries.get(text)
        if entry is None:
            return None
        if self._clock.now() - entry.dispatched_at >= self.window_seconds:
            return None
        return entry

    def record_dispatch(self, text: str, correlation_id: str) -> CooldownEntry:
        """Register a new translation attempt for text, replacing any older entry."""
        self._prune()
        entry = CooldownEntry(
            text=text, correlation_id=correlation_id, dispatched_at=self._clock.now()
        )
        self._entries[text] = entry
        return entry

    def record_output(self, text: str, correlation_id: str, output: str) -> bool:
        """
        Store the output of a finished dispatch.

        Returns:
            True if stored, False if the entry belongs to another dispatch
        """
        entry = self._entries.get(text)
        if entry is None or entry.correlation_id != correlation_id:
            return False
        entry.output = output
        return True

    def evict(self, text: str, correlation_id: Optional[str] = None) -> None:
        """Drop the entry for text, optionally only if it belongs to correlation_id."""
        entry = self._entries.get(text)
        if entry is None:
            return
        if correlation_id is not None and entry.correlation_id != correlation_id:
            return
        del self._entries[text]

    def clear(self) -> None:
        self._entries.clear()

    def _prune(self) -> None:
        now = self._clock.now()
        expired = [
            text
            for text, entry in self._entries.items()
            if not entry.in_flight and now - entry.dispatched_at >= self.window_seconds
        ]
        for text in expired:
            del self._entries[text]
