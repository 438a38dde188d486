"""RFC 822 message parser: MIME tree walking and header extraction."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from email.utils import getaddresses, parsedate_to_datetime

from inbox_ingestor.core.converter import TextExtractor
from inbox_ingestor.core.exceptions import ParseError
from inbox_ingestor.core.models import FetchedMessage, RawMessage

logger = logging.getLogger(__name__)


class MessageParser:
    """Parses fetched message bytes into RawMessage objects."""

    def __init__(self, extractor: TextExtractor | None = None) -> None:
        self._extractor = extractor or TextExtractor()
        self._bytes_parser = BytesParser(policy=policy.default)

    def parse(self, fetched: FetchedMessage, account: str, mailbox: str = "INBOX") -> RawMessage:
        """Parse one fetched message.

        Args:
            fetched: UID and RFC 822 source from the transport.
            account: Name of the owning account.
            mailbox: Mailbox the message was fetched from.

        Returns:
            Parsed RawMessage.

        Raises:
            ParseError: If the message cannot be parsed.
        """
        if not fetched.source:
            raise ParseError(f"Empty message source for UID {fetched.uid}")

        try:
            msg = self._bytes_parser.parsebytes(fetched.source)
            plain_text, html = self._walk_parts(msg)

            message_id = str(msg.get("message-id", "") or "").strip()
            if not message_id:
                # Stable key so redelivery of the same message still dedups.
                message_id = f"{account}:{mailbox}:{fetched.uid}"

            return RawMessage(
                uid=fetched.uid,
                message_id=message_id,
                subject=str(msg.get("subject", "") or ""),
                sender=str(msg.get("from", "") or ""),
                to=self._extract_addresses(msg, "to"),
                date=self._parse_date(str(msg.get("date", "") or "")),
                text=self._extractor.extract(plain_text, html),
                html=html,
                account=account,
                mailbox=mailbox,
            )
        except ParseError:
            raise
        except Exception as e:
            raise ParseError(f"Failed to parse message UID {fetched.uid}: {e}") from e

    def _walk_parts(self, msg: EmailMessage) -> tuple[str | None, str | None]:
        """Walk MIME parts to find the first text/plain and text/html bodies.

        Returns:
            Tuple of (plain_text, html), either may be None.
        """
        plain_text: str | None = None
        html: str | None = None

        for part in msg.walk():
            if part.is_multipart():
                continue
            # Skip attachments
            if part.get_content_disposition() == "attachment":
                continue

            content_type = part.get_content_type()
            if content_type == "text/plain" and plain_text is None:
                plain_text = self._decode_part(part)
            elif content_type == "text/html" and html is None:
                html = self._decode_part(part)

        return plain_text, html

    @staticmethod
    def _decode_part(part: EmailMessage) -> str:
        try:
            return part.get_content()
        except (LookupError, UnicodeError):
            # Unknown or lying charset
            payload = part.get_payload(decode=True) or b""
            return payload.decode("utf-8", errors="replace")

    @staticmethod
    def _extract_addresses(msg: EmailMessage, header: str) -> tuple[str, ...]:
        values = [str(value) for value in msg.get_all(header, [])]
        return tuple(addr for _, addr in getaddresses(values) if addr)

    @staticmethod
    def _parse_date(date_str: str) -> datetime:
        """Parse an RFC 2822 date string into an aware datetime.

        Args:
            date_str: Email date header value.

        Returns:
            Parsed datetime, or the current UTC time if parsing fails.
        """
        if not date_str:
            return datetime.now(UTC)
        try:
            parsed = parsedate_to_datetime(date_str)
        except (TypeError, ValueError):
            logger.warning("Failed to parse date: %s", date_str)
            return datetime.now(UTC)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=UTC)
        return parsed
