"""Per-message pipeline: dedup → existence check → classify → index → notify."""

from __future__ import annotations

import logging
from collections.abc import Callable

from inbox_ingestor.core.dedup import ProcessedCache
from inbox_ingestor.core.interfaces import Categorizer, IndexStore, Notifier
from inbox_ingestor.core.models import (
    FALLBACK_CATEGORY,
    HIGH_VALUE_CATEGORY,
    Category,
    IndexedDocument,
    IngestOutcome,
    IngestStats,
    RawMessage,
)

logger = logging.getLogger(__name__)


class EmailIngestor:
    """Runs one message through the ingestion pipeline.

    Stage 1 - Dedup:     skip IDs already handled in this process (no I/O)
    Stage 2 - Exists:    skip IDs already in the index; lookup errors count as "absent"
    Stage 3 - Classify:  categorize subject + text; failures use the fallback category
    Stage 4 - Index:     keyed write to the index store; the only stage that raises
    Stage 5 - Notify:    high-value category only; failures are logged
    """

    def __init__(
        self,
        index: IndexStore,
        categorizer: Categorizer,
        notifier: Notifier,
        processed: ProcessedCache | None = None,
        on_progress: Callable[[IngestStats], None] | None = None,
    ) -> None:
        self._index = index
        self._categorizer = categorizer
        self._notifier = notifier
        self._processed = processed if processed is not None else ProcessedCache()
        self._on_progress = on_progress
        self._stats = IngestStats()

    @property
    def stats(self) -> IngestStats:
        return self._stats

    @property
    def processed(self) -> ProcessedCache:
        return self._processed

    @property
    def on_progress(self) -> Callable[[IngestStats], None] | None:
        return self._on_progress

    @on_progress.setter
    def on_progress(self, callback: Callable[[IngestStats], None] | None) -> None:
        self._on_progress = callback

    async def process(self, email: RawMessage) -> IngestOutcome:
        """Ingest one message.

        Returns:
            What happened to the message.

        Raises:
            IndexStoreError: If the document could not be written to the index.
        """
        email_id = email.message_id
        self._stats.messages_seen += 1
        self._stats.last_account = email.account

        if email_id in self._processed:
            logger.warning(
                "[%s] Email already processed (in cache): %s", email.account, email.subject
            )
            self._stats.duplicates_skipped += 1
            self._notify()
            return IngestOutcome.CACHED

        try:
            exists = await self._index.exists(email_id)
        except Exception as e:
            logger.error("[%s] Failed to check if email exists: %s", email.account, e)
            exists = False

        if exists:
            logger.info("[%s] Email already indexed: %s", email.account, email.subject)
            self._processed.add(email_id)
            self._stats.duplicates_skipped += 1
            self._notify()
            return IngestOutcome.DUPLICATE

        logger.info("[%s] Processing new email: %s", email.account, email.subject)
        category = await self._categorize(email)

        document = IndexedDocument.from_message(email, category)
        try:
            await self._index.put(document)
        except Exception as e:
            logger.error("[%s] Failed to index email %s: %s", email.account, email_id, e)
            raise
        logger.info("[%s] Indexed email %s as %s", email.account, email_id, category)
        self._processed.add(email_id)
        self._stats.messages_indexed += 1

        if category == HIGH_VALUE_CATEGORY:
            await self._send_notification(document)

        self._notify()
        return IngestOutcome.INDEXED

    async def _categorize(self, email: RawMessage) -> Category:
        try:
            category = await self._categorizer.classify(f"{email.subject}\n{email.text}")
        except Exception as e:
            logger.error(
                "[%s] Failed to categorize email, using %s: %s",
                email.account, FALLBACK_CATEGORY, e,
            )
            self._stats.classification_failures += 1
            return FALLBACK_CATEGORY

        logger.info("[%s] Email categorized as: %s", email.account, category)
        return category

    async def _send_notification(self, document: IndexedDocument) -> None:
        try:
            await self._notifier.notify(document)
        except Exception as e:
            logger.error("[%s] Notification failed for %s: %s", document.account, document.id, e)
            self._stats.notifications_failed += 1
            return

        logger.info("[%s] Notified about email: %s", document.account, document.subject)
        self._stats.notifications_sent += 1

    def _notify(self) -> None:
        """Send progress update to callback if registered."""
        if self._on_progress:
            self._on_progress(self._stats)
