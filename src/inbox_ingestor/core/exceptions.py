"""Custom exceptions for the Inbox Ingestor."""


class InboxIngestorError(Exception):
    """Base exception for all Inbox Ingestor errors."""


class ConfigurationError(InboxIngestorError):
    """Account or application configuration is unusable."""


class CorruptProgressError(InboxIngestorError):
    """The progress snapshot on disk failed validation."""


class TransportError(InboxIngestorError):
    """IMAP connect, search, fetch or idle failed."""


class AuthenticationError(TransportError):
    """Failed to log in to the IMAP server."""


class ParseError(InboxIngestorError):
    """Failed to parse email MIME content."""


class ClassificationError(InboxIngestorError):
    """The categorizer was unavailable or returned an unrecognised label."""


class IndexStoreError(InboxIngestorError):
    """Failed to read from or write to the search index."""


class NotificationError(InboxIngestorError):
    """Failed to deliver a notification."""
