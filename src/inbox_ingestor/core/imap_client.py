"""IMAP transport built on imap_tools: connect, search, fetch and IDLE."""

from __future__ import annotations

import asyncio
import imaplib
import logging
import random
from collections.abc import Callable
from typing import Any, TypeVar

from imap_tools import AND, U, MailBox, MailBoxUnencrypted
from imap_tools.errors import ImapToolsError, MailboxLoginError

from inbox_ingestor.config.settings import AccountConfig
from inbox_ingestor.core.exceptions import AuthenticationError, TransportError
from inbox_ingestor.core.models import FetchedMessage, SearchCriteria

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Errors raised by imaplib, imap_tools and the socket layer
_IMAP_ERRORS = (ImapToolsError, imaplib.IMAP4.error, OSError, EOFError)


def build_criteria(criteria: SearchCriteria) -> str:
    """Render SearchCriteria as an IMAP SEARCH string.

    Examples:
        SearchCriteria(uid_from=11) -> '(UID 11:*)'
        SearchCriteria(seq_range=(4, 8)) -> '4:8'
    """
    parts: list[str] = []
    if criteria.seq_range is not None:
        start, end = criteria.seq_range
        parts.append(f"{start}:{end}")

    conditions: dict[str, Any] = {}
    if criteria.uid_from is not None:
        conditions["uid"] = U(str(criteria.uid_from), "*")
    if criteria.since is not None:
        conditions["date_gte"] = criteria.since
    if criteria.before is not None:
        conditions["date_lt"] = criteria.before
    if conditions:
        parts.append(str(AND(**conditions)))

    return " ".join(parts) or "ALL"


def _is_exists_response(response: Any) -> bool:
    if isinstance(response, bytes):
        return b"EXISTS" in response.upper()
    return "EXISTS" in str(response).upper()


class ImapTransport:
    """Async facade over one blocking imap_tools MailBox.

    Every call on the underlying connection runs in a worker thread. The
    ``lock`` is held around each sync batch by the caller and around IDLE by
    this class, so the single IMAP connection never sees interleaved commands.
    """

    def __init__(
        self,
        account: AccountConfig,
        *,
        timeout_seconds: float = 30.0,
        max_connect_retries: int = 3,
        initial_backoff_seconds: float = 1.0,
        max_backoff_seconds: float = 30.0,
        mailbox_factory: Callable[..., Any] | None = None,
    ) -> None:
        self._account = account
        self._timeout = timeout_seconds
        self._max_connect_retries = max_connect_retries
        self._initial_backoff = initial_backoff_seconds
        self._max_backoff = max_backoff_seconds
        self._mailbox_factory = mailbox_factory
        self._mailbox: Any | None = None
        self._lock = asyncio.Lock()

    @property
    def lock(self) -> asyncio.Lock:
        return self._lock

    @property
    def mailbox(self) -> Any:
        if self._mailbox is None:
            raise TransportError(
                f"IMAP not connected for account {self._account.name}. Call connect() first."
            )
        return self._mailbox

    async def connect(self) -> None:
        """Log in and select the configured mailbox, retrying network errors with backoff."""
        backoff = self._initial_backoff

        for attempt in range(self._max_connect_retries + 1):
            try:
                self._mailbox = await asyncio.to_thread(self._login)
                logger.info("IMAP connected: %s", self._account.name)
                return
            except MailboxLoginError as e:
                raise AuthenticationError(
                    f"Login failed for account {self._account.name}: {e}"
                ) from e
            except _IMAP_ERRORS as e:
                if attempt >= self._max_connect_retries:
                    raise TransportError(
                        f"Failed to connect account {self._account.name} after "
                        f"{self._max_connect_retries} retries: {e}"
                    ) from e
                sleep_time = random.uniform(0, min(backoff, self._max_backoff))
                logger.warning(
                    "Connect failed for %s (attempt %d/%d), sleeping %.2fs: %s",
                    self._account.name, attempt + 1, self._max_connect_retries,
                    sleep_time, e,
                )
                await asyncio.sleep(sleep_time)
                backoff = min(backoff * 2, self._max_backoff)

    def _login(self) -> Any:
        account = self._account
        if self._mailbox_factory is not None:
            mailbox = self._mailbox_factory(account.host, account.port, timeout=self._timeout)
        elif account.tls:
            mailbox = MailBox(account.host, account.port, timeout=self._timeout)
        else:
            mailbox = MailBoxUnencrypted(account.host, account.port, timeout=self._timeout)
        return mailbox.login(account.user, account.password, initial_folder=account.mailbox)

    async def close(self) -> None:
        """Log out. Errors are logged, the connection is dropped either way."""
        if self._mailbox is None:
            return
        mailbox, self._mailbox = self._mailbox, None
        try:
            await asyncio.to_thread(mailbox.logout)
        except _IMAP_ERRORS as e:
            logger.warning("IMAP logout failed for %s: %s", self._account.name, e)

    async def mailbox_size(self) -> int:
        status = await self._call(
            "mailbox status",
            lambda mb: mb.folder.status(self._account.mailbox, ["MESSAGES"]),
        )
        return int(status.get("MESSAGES", 0))

    async def search(self, criteria: SearchCriteria) -> list[int]:
        query = build_criteria(criteria)
        uids = await self._call("search", lambda mb: mb.uids(query))
        return sorted(int(uid) for uid in uids)

    async def fetch(self, uids: list[int]) -> list[FetchedMessage]:
        """Fetch full RFC 822 sources for ``uids`` without marking them seen."""
        if not uids:
            return []
        criteria = AND(uid=[str(uid) for uid in uids])

        def _fetch(mb: Any) -> list[FetchedMessage]:
            return [
                FetchedMessage(uid=int(msg.uid), source=msg.obj.as_bytes())
                for msg in mb.fetch(criteria, mark_seen=False, bulk=True)
                if msg.uid
            ]

        messages = await self._call("fetch", _fetch)
        logger.debug("[%s] Fetched %d messages", self._account.name, len(messages))
        return messages

    async def wait_for_change(self, timeout: float) -> bool:
        """IDLE until the server pushes EXISTS or ``timeout`` seconds pass."""
        async with self._lock:
            responses = await self._call(
                "idle", lambda mb: mb.idle.wait(timeout=timeout)
            )
        return any(_is_exists_response(response) for response in responses)

    async def _call(self, context: str, func: Callable[[Any], T]) -> T:
        mailbox = self.mailbox
        try:
            return await asyncio.to_thread(func, mailbox)
        except _IMAP_ERRORS as e:
            raise TransportError(
                f"Failed to {context} for account {self._account.name}: {e}"
            ) from e

    @classmethod
    def from_account(cls, account: AccountConfig, timeout_seconds: float = 30.0) -> ImapTransport:
        return cls(account, timeout_seconds=timeout_seconds)
