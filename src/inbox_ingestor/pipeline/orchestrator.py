"""Runs one SyncDriver per configured account with per-account failure isolation."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence

from inbox_ingestor.config.settings import AccountConfig, InboxIngestorSettings
from inbox_ingestor.core.classifier import GeminiCategorizer
from inbox_ingestor.core.dedup import ProcessedCache
from inbox_ingestor.core.exceptions import ConfigurationError
from inbox_ingestor.core.imap_client import ImapTransport
from inbox_ingestor.core.interfaces import IndexStore, MailTransport
from inbox_ingestor.core.models import IngestStats
from inbox_ingestor.core.notifier import SlackNotifier
from inbox_ingestor.core.parser import MessageParser
from inbox_ingestor.pipeline.ingestor import EmailIngestor
from inbox_ingestor.pipeline.sync_driver import SyncDriver
from inbox_ingestor.storage.progress import ProgressStore

logger = logging.getLogger(__name__)

TransportFactory = Callable[[AccountConfig], MailTransport]


class SyncOrchestrator:
    """Starts a SyncDriver per account and keeps them running concurrently.

    Only the shared setup (index schema) can fail the orchestrator as a
    whole. Missing credentials or a driver failure affect one account.
    """

    def __init__(
        self,
        accounts: Sequence[AccountConfig],
        index: IndexStore,
        ingestor: EmailIngestor,
        progress: ProgressStore,
        transport_factory: TransportFactory,
        *,
        parser: MessageParser | None = None,
        idle_timeout_seconds: float = 300.0,
    ) -> None:
        self._accounts = list(accounts)
        self._index = index
        self._ingestor = ingestor
        self._progress = progress
        self._transport_factory = transport_factory
        self._parser = parser or MessageParser()
        self._idle_timeout = idle_timeout_seconds
        self._drivers: dict[str, SyncDriver] = {}

    @classmethod
    def from_settings(
        cls,
        settings: InboxIngestorSettings,
        index: IndexStore,
        on_progress: Callable[[IngestStats], None] | None = None,
    ) -> SyncOrchestrator:
        """Wire the IMAP, Gemini and Slack adapters from settings around ``index``."""
        processed = ProcessedCache(
            settings.processed_cache_size, settings.processed_cache_evict_margin
        )
        ingestor = EmailIngestor(
            index,
            GeminiCategorizer(
                settings.gemini_api_key,
                settings.gemini_model,
                timeout_seconds=settings.classify_timeout_seconds,
            ),
            SlackNotifier(
                settings.slack_webhook_url,
                timeout_seconds=settings.notify_timeout_seconds,
            ),
            processed,
            on_progress=on_progress,
        )

        def transport_factory(account: AccountConfig) -> MailTransport:
            return ImapTransport.from_account(account, settings.imap_timeout_seconds)

        return cls(
            settings.accounts,
            index,
            ingestor,
            ProgressStore(settings.progress_path),
            transport_factory,
            idle_timeout_seconds=settings.idle_timeout_seconds,
        )

    @property
    def drivers(self) -> dict[str, SyncDriver]:
        return dict(self._drivers)

    def build_driver(self, account: AccountConfig) -> SyncDriver:
        """Create the driver for one account.

        Raises:
            ConfigurationError: If the account has no user or password.
        """
        if not account.has_credentials:
            raise ConfigurationError(f"Missing email credentials for account {account.name}")

        return SyncDriver(
            account,
            self._transport_factory(account),
            self._progress,
            self._ingestor.process,
            parser=self._parser,
            idle_timeout_seconds=self._idle_timeout,
        )

    async def run(self) -> None:
        """Ensure the index exists, then sync all accounts until they stop.

        Raises:
            IndexStoreError: If the shared index setup fails.
        """
        await self._index.ensure_schema()

        tasks: list[asyncio.Task[None]] = []
        for account in self._accounts:
            try:
                driver = self.build_driver(account)
            except ConfigurationError as e:
                logger.error("Skipping account %s: %s", account.name, e)
                continue
            self._drivers[account.name] = driver
            tasks.append(asyncio.create_task(self._run_driver(driver), name=account.name))

        if not tasks:
            logger.warning("No accounts to sync")
            return

        logger.info("Email sync started for %d account(s)", len(tasks))
        await asyncio.gather(*tasks)

    async def _run_driver(self, driver: SyncDriver) -> None:
        try:
            await driver.start()
        except Exception as e:
            logger.error("Error starting IMAP client for account %s: %s", driver.name, e)
            return

        try:
            await driver.listen()
        except Exception as e:
            logger.error("Sync stopped for account %s: %s", driver.name, e)
        else:
            logger.info("Sync stopped for account %s", driver.name)

    def stop(self) -> None:
        """Ask every driver to stop listening."""
        for driver in self._drivers.values():
            driver.stop()
