"""Inbox Ingestor - Sync IMAP accounts into a classified, searchable email index."""

from inbox_ingestor.core.models import (
    Category,
    FetchedMessage,
    IndexedDocument,
    IngestOutcome,
    IngestStats,
    RawMessage,
    SearchFilters,
    SyncResult,
)
from inbox_ingestor.pipeline.ingestor import EmailIngestor
from inbox_ingestor.pipeline.orchestrator import SyncOrchestrator
from inbox_ingestor.pipeline.sync_driver import SyncDriver
from inbox_ingestor.storage.progress import ProgressStore

__all__ = [
    "Category",
    "EmailIngestor",
    "FetchedMessage",
    "IndexedDocument",
    "IngestOutcome",
    "IngestStats",
    "ProgressStore",
    "RawMessage",
    "SearchFilters",
    "SyncDriver",
    "SyncOrchestrator",
    "SyncResult",
]
