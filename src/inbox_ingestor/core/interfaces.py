"""Protocols for the external collaborators of the ingestion core."""

from __future__ import annotations

import asyncio
from typing import Protocol, runtime_checkable

from inbox_ingestor.core.models import (
    Category,
    FetchedMessage,
    IndexedDocument,
    SearchCriteria,
    SearchFilters,
)


@runtime_checkable
class MailTransport(Protocol):
    """Connection to one account's mailbox."""

    @property
    def lock(self) -> asyncio.Lock:
        """Exclusive hold on the mailbox for one sync batch."""
        ...

    async def connect(self) -> None: ...

    async def close(self) -> None: ...

    async def mailbox_size(self) -> int: ...

    async def search(self, criteria: SearchCriteria) -> list[int]: ...

    async def fetch(self, uids: list[int]) -> list[FetchedMessage]: ...

    async def wait_for_change(self, timeout: float) -> bool:
        """Block until the mailbox reports new messages or ``timeout`` elapses."""
        ...


@runtime_checkable
class Categorizer(Protocol):
    async def classify(self, text: str) -> Category: ...


@runtime_checkable
class IndexStore(Protocol):
    async def ensure_schema(self) -> None: ...

    async def exists(self, document_id: str) -> bool: ...

    async def put(self, document: IndexedDocument) -> None: ...

    async def search(self, filters: SearchFilters) -> list[IndexedDocument]: ...


@runtime_checkable
class Notifier(Protocol):
    async def notify(self, document: IndexedDocument) -> None: ...
