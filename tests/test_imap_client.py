"""Tests for ImapTransport with a mocked imap_tools MailBox."""

from __future__ import annotations

import asyncio
import imaplib
from datetime import date
from email.message import EmailMessage
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from imap_tools.errors import MailboxLoginError

from inbox_ingestor.config.settings import AccountConfig
from inbox_ingestor.core.exceptions import AuthenticationError, TransportError
from inbox_ingestor.core.imap_client import ImapTransport, build_criteria
from inbox_ingestor.core.models import SearchCriteria


@pytest.fixture
def mock_mailbox() -> MagicMock:
    """The logged-in MailBox returned by ``login()``."""
    return MagicMock()


@pytest.fixture
def mailbox_factory(mock_mailbox: MagicMock) -> MagicMock:
    factory = MagicMock()
    factory.return_value.login.return_value = mock_mailbox
    return factory


@pytest.fixture
def transport(account: AccountConfig, mailbox_factory: MagicMock) -> ImapTransport:
    """Transport with fast retry settings."""
    return ImapTransport(
        account,
        timeout_seconds=5,
        max_connect_retries=2,
        initial_backoff_seconds=0.01,
        max_backoff_seconds=0.05,
        mailbox_factory=mailbox_factory,
    )


def _connected(transport: ImapTransport) -> ImapTransport:
    asyncio.run(transport.connect())
    return transport


# ---------- build_criteria ----------


class TestBuildCriteria:
    def test_empty_criteria_is_all(self) -> None:
        assert build_criteria(SearchCriteria()) == "ALL"

    def test_sequence_range(self) -> None:
        assert build_criteria(SearchCriteria(seq_range=(4, 8))) == "4:8"

    def test_uid_range_is_open_ended(self) -> None:
        assert build_criteria(SearchCriteria(uid_from=11)) == "(UID 11:*)"

    def test_date_window(self) -> None:
        query = build_criteria(SearchCriteria(since=date(2025, 7, 21), before=date(2025, 7, 24)))
        assert "SINCE 21-Jul-2025" in query
        assert "BEFORE 24-Jul-2025" in query

    def test_uid_and_dates_combine(self) -> None:
        query = build_criteria(SearchCriteria(uid_from=5, since=date(2025, 7, 21)))
        assert "UID 5:*" in query
        assert "SINCE 21-Jul-2025" in query


# ---------- connect / close ----------


class TestConnect:
    def test_logs_in_and_selects_mailbox(
        self, transport: ImapTransport, mailbox_factory: MagicMock, account: AccountConfig
    ) -> None:
        _connected(transport)

        mailbox_factory.assert_called_once_with("imap.example.com", 993, timeout=5)
        mailbox_factory.return_value.login.assert_called_once_with(
            "a@example.com", "secret", initial_folder="INBOX"
        )

    def test_login_failure_is_authentication_error(
        self, transport: ImapTransport, mailbox_factory: MagicMock
    ) -> None:
        """Bad credentials are not retried."""
        mailbox_factory.return_value.login.side_effect = MailboxLoginError(
            ("NO", [b"[AUTHENTICATIONFAILED] Invalid credentials"]), "OK"
        )

        with pytest.raises(AuthenticationError):
            asyncio.run(transport.connect())

        assert mailbox_factory.return_value.login.call_count == 1

    def test_network_errors_are_retried(
        self, transport: ImapTransport, mailbox_factory: MagicMock, mock_mailbox: MagicMock
    ) -> None:
        mailbox_factory.return_value.login.side_effect = [
            ConnectionResetError("reset"),
            mock_mailbox,
        ]

        with patch("inbox_ingestor.core.imap_client.asyncio.sleep", new=AsyncMock()) as sleep:
            asyncio.run(transport.connect())

        assert transport.mailbox is mock_mailbox
        assert sleep.await_count == 1

    def test_gives_up_after_max_retries(
        self, transport: ImapTransport, mailbox_factory: MagicMock
    ) -> None:
        mailbox_factory.return_value.login.side_effect = OSError("unreachable")

        with patch("inbox_ingestor.core.imap_client.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(TransportError, match="after 2 retries"):
                asyncio.run(transport.connect())

        assert mailbox_factory.return_value.login.call_count == 3

    def test_close_logs_out_once(self, transport: ImapTransport, mock_mailbox: MagicMock) -> None:
        _connected(transport)
        asyncio.run(transport.close())
        asyncio.run(transport.close())
        mock_mailbox.logout.assert_called_once()

    def test_close_swallows_logout_errors(
        self, transport: ImapTransport, mock_mailbox: MagicMock
    ) -> None:
        mock_mailbox.logout.side_effect = imaplib.IMAP4.abort("socket error")
        _connected(transport)
        asyncio.run(transport.close())
        with pytest.raises(TransportError, match="not connected"):
            transport.mailbox

    def test_calls_require_connection(self, transport: ImapTransport) -> None:
        with pytest.raises(TransportError, match="not connected"):
            asyncio.run(transport.search(SearchCriteria(uid_from=1)))


# ---------- mailbox operations ----------


class TestOperations:
    def test_mailbox_size(self, transport: ImapTransport, mock_mailbox: MagicMock) -> None:
        mock_mailbox.folder.status.return_value = {"MESSAGES": 42, "UIDNEXT": 100}
        _connected(transport)

        assert asyncio.run(transport.mailbox_size()) == 42
        mock_mailbox.folder.status.assert_called_once_with("INBOX", ["MESSAGES"])

    def test_search_returns_sorted_ints(
        self, transport: ImapTransport, mock_mailbox: MagicMock
    ) -> None:
        mock_mailbox.uids.return_value = ["15", "11", "13"]
        _connected(transport)

        assert asyncio.run(transport.search(SearchCriteria(uid_from=11))) == [11, 13, 15]
        mock_mailbox.uids.assert_called_once_with("(UID 11:*)")

    def test_fetch_does_not_mark_seen(
        self, transport: ImapTransport, mock_mailbox: MagicMock
    ) -> None:
        raw = EmailMessage()
        raw["Subject"] = "hi"
        raw.set_content("body")
        mock_mailbox.fetch.return_value = [MagicMock(uid="12", obj=raw)]
        _connected(transport)

        messages = asyncio.run(transport.fetch([12]))

        assert [m.uid for m in messages] == [12]
        assert b"Subject: hi" in messages[0].source
        _, kwargs = mock_mailbox.fetch.call_args
        assert kwargs == {"mark_seen": False, "bulk": True}

    def test_fetch_nothing_skips_server(
        self, transport: ImapTransport, mock_mailbox: MagicMock
    ) -> None:
        _connected(transport)
        assert asyncio.run(transport.fetch([])) == []
        mock_mailbox.fetch.assert_not_called()

    def test_server_errors_become_transport_errors(
        self, transport: ImapTransport, mock_mailbox: MagicMock
    ) -> None:
        mock_mailbox.uids.side_effect = imaplib.IMAP4.abort("connection lost")
        _connected(transport)

        with pytest.raises(TransportError, match="Failed to search"):
            asyncio.run(transport.search(SearchCriteria(uid_from=1)))


# ---------- IDLE ----------


class TestWaitForChange:
    def test_exists_response_means_change(
        self, transport: ImapTransport, mock_mailbox: MagicMock
    ) -> None:
        mock_mailbox.idle.wait.return_value = [b"* 43 EXISTS"]
        _connected(transport)

        assert asyncio.run(transport.wait_for_change(30)) is True
        mock_mailbox.idle.wait.assert_called_once_with(timeout=30)

    def test_timeout_or_other_responses_mean_no_change(
        self, transport: ImapTransport, mock_mailbox: MagicMock
    ) -> None:
        mock_mailbox.idle.wait.side_effect = [[], [b"* 3 EXPUNGE"]]
        _connected(transport)

        assert asyncio.run(transport.wait_for_change(30)) is False
        assert asyncio.run(transport.wait_for_change(30)) is False

    def test_idle_holds_mailbox_lock(
        self, transport: ImapTransport, mock_mailbox: MagicMock
    ) -> None:
        seen_locked: list[bool] = []
        mock_mailbox.idle.wait.side_effect = lambda timeout: seen_locked.append(
            transport.lock.locked()
        ) or []
        _connected(transport)

        asyncio.run(transport.wait_for_change(1))

        assert seen_locked == [True]
        assert not transport.lock.locked()

    def test_dropped_connection_raises(
        self, transport: ImapTransport, mock_mailbox: MagicMock
    ) -> None:
        mock_mailbox.idle.wait.side_effect = EOFError("socket closed")
        _connected(transport)

        with pytest.raises(TransportError, match="Failed to idle"):
            asyncio.run(transport.wait_for_change(1))


def test_plain_connection_uses_unencrypted_mailbox(account: AccountConfig) -> None:
    account = account.model_copy(update={"tls": False, "port": 143})
    with patch("inbox_ingestor.core.imap_client.MailBoxUnencrypted") as unencrypted:
        asyncio.run(ImapTransport.from_account(account, timeout_seconds=7).connect())
    unencrypted.assert_called_once_with("imap.example.com", 143, timeout=7)
