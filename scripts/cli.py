"""Minimal CLI entry point for running and inspecting the Inbox Ingestor."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import datetime

from inbox_ingestor.config.settings import InboxIngestorSettings
from inbox_ingestor.core.models import Category, IngestStats, SearchFilters
from inbox_ingestor.pipeline.orchestrator import SyncOrchestrator
from inbox_ingestor.storage.index_store import SqliteIndexStore
from inbox_ingestor.storage.progress import ProgressStore


def setup_logging(level: str) -> None:
    """Configure logging with timestamp and module info."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def on_progress(stats: IngestStats) -> None:
    """Print progress updates to stdout."""
    print(
        f"[{stats.last_account}] "
        f"seen={stats.messages_seen} "
        f"indexed={stats.messages_indexed} "
        f"duplicates={stats.duplicates_skipped} "
        f"notified={stats.notifications_sent}",
        end="\r",
        flush=True,
    )


def _parse_category(value: str) -> Category:
    for category in Category:
        if category.value.lower() == value.strip().lower():
            return category
    choices = ", ".join(category.value for category in Category)
    raise argparse.ArgumentTypeError(f"invalid category {value!r} (choose from {choices})")


def _parse_date(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid ISO 8601 date: {value!r}") from e


def _add_search_args(subparser: argparse.ArgumentParser) -> None:
    """Add filter flags to the search subparser."""
    subparser.add_argument("--query", "-q", help="Full-text query over subject and body")
    subparser.add_argument("--sender", help="Sender address or name fragment")
    subparser.add_argument("--recipient", help="Exact recipient address")
    subparser.add_argument("--category", type=_parse_category, help="Email category")
    subparser.add_argument("--folder", help="Mailbox folder, e.g. INBOX")
    subparser.add_argument("--account", help="Configured account name")
    subparser.add_argument(
        "--start-date", type=_parse_date, dest="start_date", help="Earliest date (ISO 8601)"
    )
    subparser.add_argument(
        "--end-date", type=_parse_date, dest="end_date", help="Latest date (ISO 8601)"
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Inbox Ingestor - Sync IMAP accounts into a searchable email index"
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("sync", help="Run startup and incremental sync for all accounts")
    subparsers.add_parser("status", help="Show checkpoints and indexed counts by category")
    subparsers.add_parser("accounts", help="List configured accounts")

    search_parser = subparsers.add_parser("search", help="Search indexed emails")
    _add_search_args(search_parser)

    reset_parser = subparsers.add_parser("reset", help="Drop an account's UID checkpoint")
    reset_parser.add_argument("--account", "-a", required=True, help="Account name")

    return parser


async def _run_sync(settings: InboxIngestorSettings) -> None:
    with SqliteIndexStore(settings.index_path) as index:
        orchestrator = SyncOrchestrator.from_settings(settings, index, on_progress=on_progress)
        try:
            await orchestrator.run()
        finally:
            orchestrator.stop()


async def _show_status(settings: InboxIngestorSettings) -> None:
    uids = await ProgressStore(settings.progress_path).all()
    print("\nCheckpoints (last UID):")
    for name, uid in sorted(uids.items()):
        print(f"  {name}: {uid}")

    with SqliteIndexStore(settings.index_path) as index:
        await index.ensure_schema()
        counts = await index.count_by_category()
    print("\nIndexed emails by category:")
    for category, count in sorted(counts.items()):
        print(f"  {category}: {count}")


async def _search(settings: InboxIngestorSettings, args: argparse.Namespace) -> None:
    filters = SearchFilters(
        query=args.query,
        sender=args.sender,
        recipient=args.recipient,
        category=args.category,
        folder=args.folder,
        account=args.account,
        start_date=args.start_date,
        end_date=args.end_date,
    )
    with SqliteIndexStore(settings.index_path) as index:
        await index.ensure_schema()
        results = await index.search(filters)

    print(f"\nFound {len(results)} emails:\n")
    for doc in results:
        print(f"  {doc.date[:19]}  [{doc.category}]  {doc.account}  {doc.sender}")
        print(f"      {doc.subject}")


async def _reset(settings: InboxIngestorSettings, account: str) -> bool:
    return await ProgressStore(settings.progress_path).remove(account)


def main() -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        sys.exit(1)

    settings = InboxIngestorSettings()
    setup_logging(settings.log_level)
    settings.ensure_directories()

    try:
        if args.command == "sync":
            asyncio.run(_run_sync(settings))

        elif args.command == "status":
            asyncio.run(_show_status(settings))

        elif args.command == "accounts":
            print(f"\nConfigured {len(settings.accounts)} accounts:\n")
            for account in settings.accounts:
                creds = "ok" if account.has_credentials else "MISSING CREDENTIALS"
                print(
                    f"  {account.name:20s} {account.user:30s} "
                    f"{account.host}:{account.port}/{account.mailbox} [{creds}]"
                )

        elif args.command == "search":
            asyncio.run(_search(settings, args))

        elif args.command == "reset":
            if asyncio.run(_reset(settings, args.account)):
                print(f"\nDropped checkpoint for {args.account}")
            else:
                print(f"\nNo checkpoint stored for {args.account}")

    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        print(f"\nError: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
