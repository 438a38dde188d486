"""SQLite FTS5-backed search index for ingested emails."""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeVar

from inbox_ingestor.core.exceptions import IndexStoreError
from inbox_ingestor.core.models import Category, IndexedDocument, SearchFilters, to_utc_iso

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Maximum number of documents returned by one search.
SEARCH_PAGE_SIZE = 100

_COLUMNS = (
    "id", "subject", "sender", "recipients", "text", "html",
    "folder", "account", "date", "category", "indexed_at",
)


def _fts_query(text: str) -> str:
    """Quote each term so user input is never parsed as FTS5 syntax."""
    terms = [term.replace('"', '""') for term in text.split()]
    return " ".join(f'"{term}"' for term in terms)


class SqliteIndexStore:
    """Stores IndexedDocuments keyed by message ID with full-text search.

    Tables:
    - emails: one row per document, primary key is the message ID
    - emails_fts: FTS5 index over subject/text/html, kept in sync by triggers
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None
        # Calls arrive from worker threads of several account tasks.
        self._db_lock = threading.Lock()

    def connect(self) -> None:
        """Open database connection."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")

    def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> SqliteIndexStore:
        self.connect()
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._conn

    async def ensure_schema(self) -> None:
        """Create tables, indexes and FTS triggers if they don't exist."""
        await self._run("ensure schema", self._create_tables)

    async def exists(self, document_id: str) -> bool:
        return await self._run("check existence", lambda: self._exists(document_id))

    async def put(self, document: IndexedDocument) -> None:
        """Insert or overwrite the document with the same ID."""
        await self._run("index email", lambda: self._upsert(document))

    async def get(self, document_id: str) -> IndexedDocument | None:
        return await self._run("get email", lambda: self._get(document_id))

    async def search(self, filters: SearchFilters) -> list[IndexedDocument]:
        """Return up to SEARCH_PAGE_SIZE matching documents, newest first."""
        return await self._run("search emails", lambda: self._search(filters))

    async def count_by_category(self) -> dict[str, int]:
        return await self._run("count emails", self._count_by_category)

    async def _run(self, context: str, func: Callable[[], T]) -> T:
        def _locked() -> T:
            with self._db_lock:
                return func()

        try:
            return await asyncio.to_thread(_locked)
        except sqlite3.Error as e:
            raise IndexStoreError(f"Failed to {context}: {e}") from e

    def _create_tables(self) -> None:
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS emails (
                id TEXT PRIMARY KEY,
                subject TEXT NOT NULL DEFAULT '',
                sender TEXT NOT NULL DEFAULT '',
                recipients TEXT NOT NULL DEFAULT '[]',
                text TEXT NOT NULL DEFAULT '',
                html TEXT,
                folder TEXT NOT NULL DEFAULT 'INBOX',
                account TEXT NOT NULL,
                date TEXT NOT NULL,
                category TEXT NOT NULL,
                indexed_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_emails_account ON emails(account);
            CREATE INDEX IF NOT EXISTS idx_emails_category ON emails(category);
            CREATE INDEX IF NOT EXISTS idx_emails_date ON emails(date);

            CREATE VIRTUAL TABLE IF NOT EXISTS emails_fts USING fts5(
                subject, text, html, content='emails', content_rowid='rowid'
            );

            CREATE TRIGGER IF NOT EXISTS emails_ai AFTER INSERT ON emails BEGIN
                INSERT INTO emails_fts(rowid, subject, text, html)
                VALUES (new.rowid, new.subject, new.text, new.html);
            END;

            CREATE TRIGGER IF NOT EXISTS emails_ad AFTER DELETE ON emails BEGIN
                INSERT INTO emails_fts(emails_fts, rowid, subject, text, html)
                VALUES ('delete', old.rowid, old.subject, old.text, old.html);
            END;

            CREATE TRIGGER IF NOT EXISTS emails_au AFTER UPDATE ON emails BEGIN
                INSERT INTO emails_fts(emails_fts, rowid, subject, text, html)
                VALUES ('delete', old.rowid, old.subject, old.text, old.html);
                INSERT INTO emails_fts(rowid, subject, text, html)
                VALUES (new.rowid, new.subject, new.text, new.html);
            END;
        """)

    def _exists(self, document_id: str) -> bool:
        row = self.conn.execute(
            "SELECT 1 FROM emails WHERE id = ?", (document_id,)
        ).fetchone()
        return row is not None

    def _upsert(self, document: IndexedDocument) -> None:
        self.conn.execute(
            """INSERT INTO emails
               (id, subject, sender, recipients, text, html,
                folder, account, date, category, indexed_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                   subject = excluded.subject,
                   sender = excluded.sender,
                   recipients = excluded.recipients,
                   text = excluded.text,
                   html = excluded.html,
                   folder = excluded.folder,
                   account = excluded.account,
                   date = excluded.date,
                   category = excluded.category,
                   indexed_at = excluded.indexed_at""",
            (
                document.id,
                document.subject,
                document.sender,
                json.dumps(list(document.to)),
                document.text,
                document.html,
                document.folder,
                document.account,
                document.date,
                str(document.category),
                document.indexed_at,
            ),
        )
        self.conn.commit()

    def _get(self, document_id: str) -> IndexedDocument | None:
        row = self.conn.execute(
            f"SELECT {', '.join(_COLUMNS)} FROM emails WHERE id = ?", (document_id,)
        ).fetchone()
        return self._row_to_document(row) if row else None

    def _search(self, filters: SearchFilters) -> list[IndexedDocument]:
        clauses: list[str] = []
        params: list[Any] = []

        if filters.query and filters.query.strip():
            clauses.append(
                "e.rowid IN (SELECT rowid FROM emails_fts WHERE emails_fts MATCH ?)"
            )
            params.append(_fts_query(filters.query))
        if filters.sender:
            clauses.append("e.sender LIKE ?")
            params.append(f"%{filters.sender}%")
        if filters.recipient:
            clauses.append(
                "EXISTS (SELECT 1 FROM json_each(e.recipients) WHERE lower(value) = lower(?))"
            )
            params.append(filters.recipient)
        if filters.category:
            clauses.append("e.category = ?")
            params.append(str(filters.category))
        if filters.folder:
            clauses.append("e.folder = ?")
            params.append(filters.folder)
        if filters.account:
            clauses.append("e.account = ?")
            params.append(filters.account)
        if filters.start_date:
            clauses.append("e.date >= ?")
            params.append(to_utc_iso(filters.start_date))
        if filters.end_date:
            clauses.append("e.date <= ?")
            params.append(to_utc_iso(filters.end_date))

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        columns = ", ".join(f"e.{column}" for column in _COLUMNS)
        rows = self.conn.execute(
            f"SELECT {columns} FROM emails e {where} ORDER BY e.date DESC LIMIT ?",
            (*params, SEARCH_PAGE_SIZE),
        ).fetchall()
        return [self._row_to_document(row) for row in rows]

    def _count_by_category(self) -> dict[str, int]:
        rows = self.conn.execute(
            "SELECT category, COUNT(*) as cnt FROM emails GROUP BY category"
        ).fetchall()
        return {row["category"]: row["cnt"] for row in rows}

    @staticmethod
    def _row_to_document(row: sqlite3.Row) -> IndexedDocument:
        return IndexedDocument(
            id=row["id"],
            subject=row["subject"],
            sender=row["sender"],
            to=tuple(json.loads(row["recipients"])),
            text=row["text"],
            html=row["html"],
            folder=row["folder"],
            account=row["account"],
            date=row["date"],
            category=Category(row["category"]),
            indexed_at=row["indexed_at"],
        )
