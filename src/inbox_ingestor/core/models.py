"""Dataclasses and enums for the Inbox Ingestor domain model."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import UTC, date, datetime
from enum import StrEnum
from typing import Any


class Category(StrEnum):
    """Closed set of labels the categorizer may assign."""

    INTERESTED = "Interested"
    MEETING_BOOKED = "Meeting Booked"
    NOT_INTERESTED = "Not Interested"
    SPAM = "Spam"
    OUT_OF_OFFICE = "Out of Office"


# Messages in this category trigger a notification.
HIGH_VALUE_CATEGORY = Category.INTERESTED

# Assigned when classification fails so the message is still indexed.
FALLBACK_CATEGORY = Category.SPAM


class SyncMode(StrEnum):
    STARTUP = "startup"
    INCREMENTAL = "incremental"


class IngestOutcome(StrEnum):
    """What the pipeline did with one message."""

    CACHED = "cached"
    DUPLICATE = "duplicate"
    INDEXED = "indexed"


@dataclass(frozen=True)
class SearchCriteria:
    """Mailbox search criteria understood by a mail transport.

    ``uid_from`` selects UIDs ``uid_from:*``; ``seq_range`` selects message
    sequence numbers ``start:end``. Dates bound the internal date
    (``since`` inclusive, ``before`` exclusive).
    """

    uid_from: int | None = None
    seq_range: tuple[int, int] | None = None
    since: date | None = None
    before: date | None = None


@dataclass(frozen=True)
class FetchedMessage:
    """One message as fetched from the server, before parsing."""

    uid: int
    source: bytes


@dataclass(frozen=True)
class RawMessage:
    """A parsed message, alive only for one processing pass."""

    uid: int
    message_id: str
    subject: str
    sender: str
    to: tuple[str, ...]
    date: datetime
    text: str
    account: str
    html: str | None = None
    mailbox: str = "INBOX"


def to_utc_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat()


@dataclass(frozen=True)
class IndexedDocument:
    """The persisted representation of a message in the search index."""

    id: str
    subject: str
    sender: str
    to: tuple[str, ...]
    text: str
    folder: str
    account: str
    date: str
    category: Category
    html: str | None = None
    indexed_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    @classmethod
    def from_message(cls, message: RawMessage, category: Category) -> IndexedDocument:
        return cls(
            id=message.message_id,
            subject=message.subject,
            sender=message.sender,
            to=message.to,
            text=message.text,
            html=message.html,
            folder=message.mailbox,
            account=message.account,
            date=to_utc_iso(message.date),
            category=category,
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["to"] = list(self.to)
        data["category"] = str(self.category)
        return data


@dataclass(frozen=True)
class SearchFilters:
    """Filters for index search. Unset fields do not constrain the result."""

    query: str | None = None
    sender: str | None = None
    recipient: str | None = None
    category: Category | None = None
    folder: str | None = None
    account: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None


@dataclass
class SyncResult:
    """Summary of one sync batch for one account."""

    account: str
    mode: SyncMode
    checkpoint_before: int | None = None
    checkpoint_after: int | None = None
    messages_fetched: int = 0
    messages_processed: int = 0
    messages_failed: int = 0
    skipped: bool = False


@dataclass
class IngestStats:
    """Mutable counters for pipeline status reporting."""

    messages_seen: int = 0
    messages_indexed: int = 0
    duplicates_skipped: int = 0
    classification_failures: int = 0
    notifications_sent: int = 0
    notifications_failed: int = 0
    last_account: str = ""
