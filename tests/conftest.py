"""Shared fixtures and in-memory fakes for Inbox Ingestor tests."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import UTC, date, datetime
from email.message import EmailMessage
from email.utils import format_datetime
from pathlib import Path

import pytest

from inbox_ingestor.config.settings import AccountConfig, DateWindow
from inbox_ingestor.core.exceptions import ClassificationError, IndexStoreError, TransportError
from inbox_ingestor.core.models import (
    Category,
    FetchedMessage,
    IndexedDocument,
    RawMessage,
    SearchCriteria,
    SearchFilters,
)


def build_source(
    uid: int,
    *,
    subject: str | None = None,
    message_id: str | None = "",
    sender: str = "Alice <alice@example.com>",
    to: str = "bob@example.com",
    sent: datetime | None = None,
    text: str | None = "Hello there.",
    html: str | None = None,
) -> bytes:
    """Build RFC 822 bytes for a test message.

    ``message_id=""`` derives ``<msg-{uid}@example.com>``; ``None`` omits the header.
    """
    msg = EmailMessage()
    msg["Subject"] = subject if subject is not None else f"Message {uid}"
    msg["From"] = sender
    msg["To"] = to
    msg["Date"] = format_datetime(sent or datetime(2025, 7, 22, 10, 0, tzinfo=UTC))
    if message_id == "":
        message_id = f"<msg-{uid}@example.com>"
    if message_id is not None:
        msg["Message-ID"] = message_id

    if text is not None:
        msg.set_content(text)
    if html is not None:
        if text is not None:
            msg.add_alternative(html, subtype="html")
        else:
            msg.set_content(html, subtype="html")
    return msg.as_bytes()


class FakeTransport:
    """In-memory mailbox that mimics IMAP search semantics."""

    def __init__(
        self,
        messages: dict[int, bytes] | None = None,
        *,
        dates: dict[int, date] | None = None,
        changes: list[bool] | None = None,
    ) -> None:
        self.messages = dict(messages or {})
        self.dates = dict(dates or {})
        self.changes = list(changes or [])
        self.lock = asyncio.Lock()
        self.connected = False
        self.closed = False
        self.connect_error: Exception | None = None
        self.fetch_error: Exception | None = None
        self.fetch_gate: asyncio.Event | None = None
        self.fetch_started = asyncio.Event()
        self.search_calls: list[SearchCriteria] = []
        self.fetch_calls: list[list[int]] = []

    async def connect(self) -> None:
        if self.connect_error:
            raise self.connect_error
        self.connected = True

    async def close(self) -> None:
        self.closed = True

    async def mailbox_size(self) -> int:
        return len(self.messages)

    async def search(self, criteria: SearchCriteria) -> list[int]:
        self.search_calls.append(criteria)
        uids = sorted(self.messages)

        if criteria.seq_range is not None:
            start, end = criteria.seq_range
            uids = uids[start - 1:end]
        if criteria.uid_from is not None:
            matched = [uid for uid in uids if uid >= criteria.uid_from]
            # IMAP: "N:*" always includes the highest UID
            if not matched and uids:
                matched = [uids[-1]]
            uids = matched
        if criteria.since is not None:
            uids = [uid for uid in uids if self.dates.get(uid, date.min) >= criteria.since]
        if criteria.before is not None:
            uids = [uid for uid in uids if self.dates.get(uid, date.max) < criteria.before]
        return uids

    async def fetch(self, uids: list[int]) -> list[FetchedMessage]:
        self.fetch_calls.append(list(uids))
        self.fetch_started.set()
        if self.fetch_gate is not None:
            await self.fetch_gate.wait()
        if self.fetch_error:
            raise self.fetch_error
        # Servers do not promise UID order
        return [FetchedMessage(uid, self.messages[uid]) for uid in reversed(uids)]

    async def wait_for_change(self, timeout: float) -> bool:
        await asyncio.sleep(0)
        if not self.changes:
            raise TransportError("connection closed")
        return self.changes.pop(0)


class FakeIndexStore:
    """Dict-backed index store with switchable failures."""

    def __init__(self) -> None:
        self.docs: dict[str, IndexedDocument] = {}
        self.put_calls: list[str] = []
        self.schema_ready = False
        self.schema_error: Exception | None = None
        self.exists_error: Exception | None = None
        self.failing_put_ids: set[str] = set()

    async def ensure_schema(self) -> None:
        if self.schema_error:
            raise self.schema_error
        self.schema_ready = True

    async def exists(self, document_id: str) -> bool:
        await asyncio.sleep(0)
        if self.exists_error:
            raise self.exists_error
        return document_id in self.docs

    async def put(self, document: IndexedDocument) -> None:
        await asyncio.sleep(0)
        self.put_calls.append(document.id)
        if document.id in self.failing_put_ids:
            raise IndexStoreError(f"Failed to index email: {document.id}")
        self.docs[document.id] = document

    async def search(self, filters: SearchFilters) -> list[IndexedDocument]:
        return sorted(self.docs.values(), key=lambda d: d.date, reverse=True)


class FakeCategorizer:
    def __init__(self, category: Category = Category.NOT_INTERESTED) -> None:
        self.category = category
        self.error: Exception | None = None
        self.calls: list[str] = []

    async def classify(self, text: str) -> Category:
        self.calls.append(text)
        if self.error:
            raise self.error
        return self.category


class FakeNotifier:
    def __init__(self) -> None:
        self.sent: list[IndexedDocument] = []
        self.error: Exception | None = None

    async def notify(self, document: IndexedDocument) -> None:
        if self.error:
            raise self.error
        self.sent.append(document)


@pytest.fixture
def make_source() -> Callable[..., bytes]:
    """Factory for RFC 822 test messages."""
    return build_source


@pytest.fixture
def transport_factory() -> type[FakeTransport]:
    return FakeTransport


@pytest.fixture
def index_store() -> FakeIndexStore:
    return FakeIndexStore()


@pytest.fixture
def categorizer() -> FakeCategorizer:
    return FakeCategorizer()


@pytest.fixture
def failing_categorizer() -> FakeCategorizer:
    fake = FakeCategorizer()
    fake.error = ClassificationError("model unavailable")
    return fake


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def account() -> AccountConfig:
    """An account without a date window."""
    return AccountConfig(
        name="Account A",
        user="a@example.com",
        password="secret",
        host="imap.example.com",
        max_messages=5,
    )


@pytest.fixture
def windowed_account() -> AccountConfig:
    """An account restricted to 2025-07-21 <= date < 2025-07-24."""
    return AccountConfig(
        name="Account A",
        user="a@example.com",
        password="secret",
        host="imap.example.com",
        max_messages=5,
        date_window=DateWindow(since=date(2025, 7, 21), before=date(2025, 7, 24)),
    )


@pytest.fixture
def sample_message() -> RawMessage:
    """A sample parsed message."""
    return RawMessage(
        uid=42,
        message_id="<test@example.com>",
        subject="Test Subject",
        sender="Alice <alice@example.com>",
        to=("bob@example.com",),
        date=datetime(2024, 1, 15, 10, 30, tzinfo=UTC),
        text="Hello, this is plain text.",
        html="<p>Hello, this is <b>HTML</b>.</p>",
        account="Account A",
    )


@pytest.fixture
def progress_path(tmp_path: Path) -> Path:
    """Temporary progress snapshot path."""
    return tmp_path / "data" / "last_uids.json"


@pytest.fixture
def tmp_db_path(tmp_path: Path) -> Path:
    """Temporary database path for tests."""
    return tmp_path / "index.db"
