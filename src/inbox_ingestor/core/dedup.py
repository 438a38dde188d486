"""Bounded in-memory set of message IDs already handled by this process."""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class ProcessedCache:
    """Insertion-ordered set with a soft size cap.

    When the size exceeds ``max_size``, the oldest-inserted entries are
    evicted until ``max_size - evict_margin`` remain. An evicted ID only costs
    a redundant existence check against the index.
    """

    def __init__(self, max_size: int = 1000, evict_margin: int = 100) -> None:
        if max_size < 1:
            raise ValueError("max_size must be positive")
        if not 0 <= evict_margin < max_size:
            raise ValueError("evict_margin must be in [0, max_size)")
        self._max_size = max_size
        self._evict_margin = evict_margin
        # dict keeps insertion order
        self._entries: dict[str, None] = {}

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def add(self, message_id: str) -> None:
        """Register a message ID, evicting the oldest entries past the cap."""
        self._entries[message_id] = None

        if len(self._entries) > self._max_size:
            target = self._max_size - self._evict_margin
            excess = len(self._entries) - target
            for old_id in list(self._entries)[:excess]:
                del self._entries[old_id]
            logger.debug("Evicted %d entries from processed cache", excess)

    def clear(self) -> None:
        self._entries.clear()
