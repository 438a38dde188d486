"""Durable per-account UID checkpoints stored as one atomically replaced JSON file."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path

from inbox_ingestor.core.exceptions import CorruptProgressError

logger = logging.getLogger(__name__)


def _is_valid_uid(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


class ProgressStore:
    """Tracks the last synchronized UID of every account.

    The whole mapping is written as a single snapshot: to a temporary sibling
    file first, then moved over the stable file with ``os.replace``, so a
    reader never observes a partial write. Mutations are serialized through
    one FIFO lock. Reads reuse the last loaded snapshot while the file's
    modification time is unchanged.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._tmp_path = path.with_name(path.name + ".tmp")
        self._cache: dict[str, int] | None = None
        self._cache_mtime_ns: int | None = None
        self._write_lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    async def read(self, account: str) -> int | None:
        """Return the last checkpointed UID for ``account``.

        Never raises for storage problems: a missing, unreadable or corrupt
        file is logged and reported as "no checkpoint".
        """
        _check_account(account)
        try:
            uids = await asyncio.to_thread(self._load)
        except (OSError, CorruptProgressError) as e:
            logger.error("Error reading UID for account %s: %s", account, e)
            return None
        return uids.get(account)

    async def all(self) -> dict[str, int]:
        """Return a copy of every stored checkpoint, or {} on error."""
        try:
            uids = await asyncio.to_thread(self._load)
        except (OSError, CorruptProgressError) as e:
            logger.error("Error reading all UIDs: %s", e)
            return {}
        return dict(uids)

    async def write(self, account: str, uid: int) -> bool:
        """Checkpoint ``uid`` for ``account``.

        Returns:
            True if the snapshot was replaced, False if nothing changed.

        Raises:
            ValueError: If ``account`` is empty or ``uid`` is not a non-negative int.
            CorruptProgressError: If the existing snapshot is corrupt.
            OSError: If the snapshot cannot be written.
        """
        _check_account(account)
        if not _is_valid_uid(uid):
            raise ValueError(f"UID must be a non-negative integer, got: {uid!r}")

        async with self._write_lock:
            uids = await asyncio.to_thread(self._load)
            current = uids.get(account)

            if current == uid:
                return False
            if current is not None and uid < current:
                logger.warning(
                    "Refusing to move UID for account %s backwards (%d -> %d)",
                    account, current, uid,
                )
                return False

            updated = {**uids, account: uid}
            await asyncio.to_thread(self._save, updated)
            logger.debug("Checkpointed account %s at UID %d", account, uid)
            return True

    async def remove(self, account: str) -> bool:
        """Drop the checkpoint of one account. Returns False if there was none."""
        _check_account(account)
        async with self._write_lock:
            uids = await asyncio.to_thread(self._load)
            if account not in uids:
                return False
            updated = {name: uid for name, uid in uids.items() if name != account}
            await asyncio.to_thread(self._save, updated)
            return True

    async def clear(self) -> None:
        """Reset the store to an empty snapshot."""
        async with self._write_lock:
            await asyncio.to_thread(self._save, {})

    def _load(self) -> dict[str, int]:
        """Load the snapshot, reusing the cache while the file is unchanged."""
        try:
            mtime_ns = self._path.stat().st_mtime_ns
        except FileNotFoundError:
            self._cache = {}
            self._cache_mtime_ns = None
            return {}

        if self._cache is not None and self._cache_mtime_ns == mtime_ns:
            return self._cache

        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise CorruptProgressError(f"Unreadable UID file {self._path}: {e}") from e
        if not isinstance(data, dict):
            raise CorruptProgressError(f"Invalid UID file format in {self._path}")

        # One bad entry invalidates the whole snapshot.
        for account, uid in data.items():
            if not _is_valid_uid(uid):
                raise CorruptProgressError(f"Invalid UID for account {account}: {uid!r}")

        self._cache = data
        self._cache_mtime_ns = mtime_ns
        return data

    def _save(self, uids: dict[str, int]) -> None:
        """Write the full snapshot to a temp file, fsync, then atomically replace."""
        self._path.parent.mkdir(parents=True, exist_ok=True)

        with open(self._tmp_path, "w", encoding="utf-8") as f:
            json.dump(uids, f, indent=2, sort_keys=True)
            f.flush()
            os.fsync(f.fileno())
        os.replace(self._tmp_path, self._path)

        self._cache = dict(uids)
        self._cache_mtime_ns = self._path.stat().st_mtime_ns


def _check_account(account: str) -> None:
    if not account or not isinstance(account, str):
        raise ValueError("Account name must be a non-empty string")
