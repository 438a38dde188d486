"""Configuration via pydantic-settings with .env support."""

from __future__ import annotations

from datetime import date
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DateWindow(BaseModel):
    """Bounded date window: ``since`` inclusive, ``before`` exclusive."""

    model_config = ConfigDict(frozen=True)

    since: date | None = None
    before: date | None = None

    @model_validator(mode="after")
    def _check_order(self) -> DateWindow:
        if self.since and self.before and self.since >= self.before:
            raise ValueError("date_window.since must be earlier than date_window.before")
        return self


class AccountConfig(BaseModel):
    """Identity and connection parameters for one IMAP account."""

    model_config = ConfigDict(frozen=True)

    name: str
    user: str = ""
    password: str = Field(default="", repr=False)
    host: str = "imap.gmail.com"
    port: int = 993
    tls: bool = True
    mailbox: str = "INBOX"
    date_window: DateWindow | None = None
    max_messages: int = Field(default=5, ge=1)
    fetch_on_startup: bool = True

    @field_validator("name")
    @classmethod
    def _non_empty_name(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("account name must be non-empty")
        return value

    @property
    def has_credentials(self) -> bool:
        return bool(self.user and self.password)


class InboxIngestorSettings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(
        env_prefix="INBOX_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Mail accounts (JSON list in INBOX_ACCOUNTS)
    accounts: list[AccountConfig] = Field(default_factory=list)

    # Storage paths
    progress_path: Path = Path("data/last_uids.json")
    index_path: Path = Path("data/inbox_index.db")

    # In-memory dedup cache
    processed_cache_size: int = Field(default=1000, ge=1)
    processed_cache_evict_margin: int = Field(default=100, ge=0)

    # Classification
    gemini_api_key: str = Field(default="", repr=False)
    gemini_model: str = "gemini-2.5-flash"
    classify_timeout_seconds: float = 30.0

    # Notification
    slack_webhook_url: str = Field(default="", repr=False)
    notify_timeout_seconds: float = 10.0

    # IMAP
    imap_timeout_seconds: float = 30.0
    idle_timeout_seconds: float = 300.0

    # Logging
    log_level: str = "INFO"

    @field_validator("accounts")
    @classmethod
    def _unique_account_names(cls, accounts: list[AccountConfig]) -> list[AccountConfig]:
        names = [account.name for account in accounts]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate account names: {', '.join(duplicates)}")
        return accounts

    @model_validator(mode="after")
    def _check_cache_margin(self) -> InboxIngestorSettings:
        if self.processed_cache_evict_margin >= self.processed_cache_size:
            raise ValueError("processed_cache_evict_margin must be below processed_cache_size")
        return self

    def ensure_directories(self) -> None:
        """Create data directories if they don't exist."""
        self.progress_path.parent.mkdir(parents=True, exist_ok=True)
        self.index_path.parent.mkdir(parents=True, exist_ok=True)
