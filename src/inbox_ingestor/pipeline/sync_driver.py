"""Per-account sync state machine: one startup sync, then incremental syncs on change."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import StrEnum

from inbox_ingestor.config.settings import AccountConfig
from inbox_ingestor.core.exceptions import CorruptProgressError
from inbox_ingestor.core.interfaces import MailTransport
from inbox_ingestor.core.models import (
    FetchedMessage,
    RawMessage,
    SearchCriteria,
    SyncMode,
    SyncResult,
)
from inbox_ingestor.core.parser import MessageParser
from inbox_ingestor.storage.progress import ProgressStore

logger = logging.getLogger(__name__)

MessageHandler = Callable[[RawMessage], Awaitable[object]]


class SyncState(StrEnum):
    IDLE = "idle"
    STARTUP_SYNC = "startup_sync"
    LISTENING = "listening"
    INCREMENTAL_SYNC = "incremental_sync"
    STOPPED = "stopped"


class SyncDriver:
    """Synchronizes one account's mailbox into a message handler.

    idle → startup_sync (once, if configured) → listening ⇄ incremental_sync,
    ending in stopped on a fatal transport error or ``stop()``.

    Every batch (range computation, fetch, processing, checkpoint) runs under
    the transport's mailbox lock, so overlapping triggers serialize.
    """

    def __init__(
        self,
        account: AccountConfig,
        transport: MailTransport,
        progress: ProgressStore,
        on_message: MessageHandler,
        *,
        parser: MessageParser | None = None,
        idle_timeout_seconds: float = 300.0,
    ) -> None:
        self._account = account
        self._transport = transport
        self._progress = progress
        self._on_message = on_message
        self._parser = parser or MessageParser()
        self._idle_timeout = idle_timeout_seconds
        self._state = SyncState.IDLE
        self._stopping = asyncio.Event()
        self._pending: set[asyncio.Task[SyncResult]] = set()

    @property
    def account(self) -> AccountConfig:
        return self._account

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def name(self) -> str:
        return self._account.name

    async def start(self) -> None:
        """Connect and run the startup sync. Errors here stop the driver and propagate."""
        try:
            await self._transport.connect()
            if self._account.fetch_on_startup:
                logger.info("[%s] Starting initial sync...", self.name)
                await self.sync_startup()
        except BaseException:
            await self._shutdown()
            raise
        self._state = SyncState.LISTENING

    async def listen(self) -> None:
        """Wait for mailbox changes and sync each one until stopped.

        A round that ends without a change signal still runs an incremental
        sync: EXISTS notices sent while no IDLE was active are never seen, so
        new mail is picked up within one ``idle_timeout_seconds`` at worst.

        Incremental sync errors are logged and listening resumes; transport
        errors while waiting end the driver.
        """
        try:
            while not self._stopping.is_set():
                self._state = SyncState.LISTENING
                changed = await self._transport.wait_for_change(self._idle_timeout)
                if self._stopping.is_set():
                    break

                if changed:
                    logger.info("[%s] New message(s) detected, processing...", self.name)
                else:
                    logger.debug("[%s] IDLE round ended, checking for new messages", self.name)
                try:
                    await self.sync_incremental()
                except Exception as e:
                    logger.error("[%s] Incremental sync failed: %s", self.name, e)
        finally:
            await self._shutdown()

    async def run(self) -> None:
        """Start, then listen until stopped."""
        await self.start()
        await self.listen()

    def stop(self) -> None:
        """Ask the listen loop to exit after the current wait."""
        self._stopping.set()

    def trigger(self) -> asyncio.Task[SyncResult]:
        """Schedule an incremental sync in response to an external change signal."""
        task = asyncio.create_task(self.sync_incremental())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def sync_startup(self) -> SyncResult:
        return await self._sync(SyncMode.STARTUP)

    async def sync_incremental(self) -> SyncResult:
        return await self._sync(SyncMode.INCREMENTAL)

    async def _sync(self, mode: SyncMode) -> SyncResult:
        async with self._transport.lock:
            self._state = (
                SyncState.STARTUP_SYNC if mode is SyncMode.STARTUP else SyncState.INCREMENTAL_SYNC
            )
            try:
                return await self._run_batch(mode)
            finally:
                if not self._stopping.is_set():
                    self._state = SyncState.LISTENING

    async def _run_batch(self, mode: SyncMode) -> SyncResult:
        last_uid = await self._progress.read(self.name)
        result = SyncResult(
            account=self.name, mode=mode, checkpoint_before=last_uid, checkpoint_after=last_uid
        )

        if mode is SyncMode.STARTUP:
            uids = await self._startup_range()
            logger.info(
                "[%s] Startup sync: processing last %d messages",
                self.name, self._account.max_messages,
            )
        else:
            if last_uid is None:
                logger.error(
                    "[%s] No lastUid found for incremental sync, skipping", self.name
                )
                result.skipped = True
                return result
            uids = await self._incremental_range(last_uid)
            logger.info(
                "[%s] Incremental sync: processing messages with UID > %d", self.name, last_uid
            )

        if not uids:
            logger.info("[%s] No new messages to process", self.name)
            return result

        messages = sorted(await self._transport.fetch(uids), key=lambda m: m.uid)
        if mode is SyncMode.INCREMENTAL:
            messages = [m for m in messages if m.uid > last_uid]
        elif len(messages) > self._account.max_messages:
            logger.info(
                "[%s] Startup: truncating %d messages to max limit (%d)",
                self.name, len(messages), self._account.max_messages,
            )
            messages = messages[-self._account.max_messages:]

        result.messages_fetched = len(messages)
        logger.info("[%s] Found %d messages to process", self.name, len(messages))

        max_uid = await self._process_messages(messages, result)

        if max_uid is not None and (last_uid is None or max_uid > last_uid):
            try:
                await self._progress.write(self.name, max_uid)
            except (CorruptProgressError, OSError) as e:
                # Messages stay indexed; the next batch re-reads them and dedups.
                logger.error("[%s] Failed to checkpoint UID %d: %s", self.name, max_uid, e)
            else:
                result.checkpoint_after = max_uid
                logger.info("[%s] Updated lastUid to: %d", self.name, max_uid)

        logger.info(
            "[%s] Processed %d messages (%d failed)",
            self.name, result.messages_processed, result.messages_failed,
        )
        return result

    async def _process_messages(
        self, messages: list[FetchedMessage], result: SyncResult
    ) -> int | None:
        """Hand each message to the handler; return the max UID that succeeded."""
        max_uid: int | None = None

        for fetched in messages:
            try:
                email = self._parser.parse(fetched, self.name, self._account.mailbox)
                await self._on_message(email)
            except Exception as e:
                logger.error(
                    "[%s] Failed to process message UID %d: %s", self.name, fetched.uid, e
                )
                result.messages_failed += 1
                continue

            result.messages_processed += 1
            if max_uid is None or fetched.uid > max_uid:
                max_uid = fetched.uid
            logger.info(
                "[%s] Processed message UID: %d, Subject: %s",
                self.name, fetched.uid, email.subject,
            )

        return max_uid

    async def _startup_range(self) -> list[int]:
        window = self._account.date_window
        limit = self._account.max_messages

        if window is not None:
            uids = await self._transport.search(
                SearchCriteria(since=window.since, before=window.before)
            )
            return sorted(uids)[-limit:]

        total = await self._transport.mailbox_size()
        if total <= 0:
            return []
        start = max(1, total - limit + 1)
        uids = await self._transport.search(SearchCriteria(seq_range=(start, total)))
        return sorted(uids)[-limit:]

    async def _incremental_range(self, last_uid: int) -> list[int]:
        window = self._account.date_window
        criteria = SearchCriteria(
            uid_from=last_uid + 1,
            since=window.since if window else None,
            before=window.before if window else None,
        )
        uids = await self._transport.search(criteria)
        # "N:*" always matches the newest message, even when its UID < N.
        return sorted(uid for uid in uids if uid > last_uid)

    async def _shutdown(self) -> None:
        self._state = SyncState.STOPPED
        for task in list(self._pending):
            task.cancel()
        await self._transport.close()
