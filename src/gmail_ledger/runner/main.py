"""
CLI main entry point.
"""

import argparse
import json
import logging
import sys
import threading
from pathlib import Path

from ..config import Config, create_default_config, load_config
from ..errors import FetchFailedError, GmailLedgerError, RevocationError
from ..services import InboxService

logger = logging.getLogger(__name__)

CONFIDENCE_ICONS = {"high": "🟢", "medium": "🟡", "low": "🔴"}


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="gmail-ledger",
        description="Import transaction notifications from Gmail into the ledger after review",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("init-config", help="Write a default config file")

    status_parser = subparsers.add_parser("status", help="Show connection and review status")
    status_parser.add_argument("--user", required=True, help="User id")

    connect_parser = subparsers.add_parser("connect", help="Start mailbox consent (prints URL)")
    connect_parser.add_argument("--user", required=True, help="User id")

    callback_parser = subparsers.add_parser(
        "callback", help="Complete consent with the code and state from the redirect"
    )
    callback_parser.add_argument("--user", required=True, help="User id")
    callback_parser.add_argument("--code", required=True, help="Authorization code")
    callback_parser.add_argument("--state", required=True, help="State parameter")

    fetch_parser = subparsers.add_parser("fetch", help="Fetch and stage new transactions")
    fetch_parser.add_argument("--user", required=True, help="User id")
    fetch_parser.add_argument(
        "--max-results",
        type=int,
        default=None,
        help="Maximum messages to fetch (default: fetch.max_results)",
    )
    fetch_parser.add_argument(
        "--days",
        type=int,
        default=None,
        help="Look-back window in days (default: fetch.window_days)",
    )
    fetch_parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Whole-fetch time box in seconds (default: fetch.timeout_seconds)",
    )

    pending_parser = subparsers.add_parser("pending", help="List transactions awaiting review")
    pending_parser.add_argument("--user", required=True, help="User id")
    pending_parser.add_argument("--json", action="store_true", help="Output JSON")

    edit_parser = subparsers.add_parser("edit", help="Edit a pending transaction")
    edit_parser.add_argument("--user", required=True, help="User id")
    edit_parser.add_argument("id", type=int, help="Pending transaction id")
    edit_parser.add_argument("--vendor", help="New vendor")
    edit_parser.add_argument("--category", help="New category")
    edit_parser.add_argument("--amount", help="New amount")
    edit_parser.add_argument("--date", help="New date (YYYY-MM-DD)")
    edit_parser.add_argument("--description", help="New description")

    delete_parser = subparsers.add_parser("delete", help="Discard a pending transaction")
    delete_parser.add_argument("--user", required=True, help="User id")
    delete_parser.add_argument("id", type=int, help="Pending transaction id")

    confirm_parser = subparsers.add_parser("confirm", help="Record pending transactions in the ledger")
    confirm_parser.add_argument("--user", required=True, help="User id")
    confirm_parser.add_argument("ids", type=int, nargs="+", help="Pending transaction ids")

    revoke_parser = subparsers.add_parser(
        "revoke", help="Disconnect the mailbox and purge unconfirmed data"
    )
    revoke_parser.add_argument("--user", required=True, help="User id")

    sync_parser = subparsers.add_parser("sync-all", help="Fetch for every connected user")
    sync_parser.add_argument(
        "--loop",
        action="store_true",
        help="Keep running every fetch.scheduler_interval_minutes",
    )

    return parser


def cmd_init_config(config_path: Path) -> int:
    """Write a default config file."""
    if config_path.exists():
        print(f"❌ {config_path} already exists")
        return 1
    create_default_config(config_path)
    print(f"✓ Wrote default config to {config_path}")
    return 0


def cmd_status(service: InboxService, user_id: str) -> int:
    """Show connection and review status."""
    status = service.get_connection_status(user_id)
    counts = service.store.count_by_state(user_id)

    print(f"\n📊 Status for {user_id}")
    print("=" * 40)
    print(f"  Connected:       {'yes' if status.connected else 'no'}")
    if status.connected_at:
        print(f"  Connected at:    {status.connected_at}")
    print(f"  Last fetch:      {status.last_fetch_at or 'never'}")
    if status.last_error:
        print(f"  Last error:      [{status.last_error_kind}] {status.last_error}")
    if status.needs_reauth:
        print("  ⚠️  Re-consent required (run 'connect')")
    print(f"  Pending review:  {counts.get('pending', 0)}")
    print(f"  Confirmed:       {counts.get('confirmed', 0)}")
    print(f"  Deleted:         {counts.get('deleted', 0)}")
    print()
    return 0


def cmd_connect(service: InboxService, user_id: str) -> int:
    """Print the consent URL."""
    url = service.begin_consent(user_id)
    print("🔗 Open this URL to grant read-only mailbox access:\n")
    print(f"  {url}\n")
    print("Then run 'callback' with the code and state from the redirect.")
    return 0


def cmd_callback(service: InboxService, user_id: str, code: str, state: str) -> int:
    """Complete consent."""
    status = service.complete_consent(user_id, code, state)
    print(f"✓ Mailbox connected for {user_id} at {status.connected_at}")
    return 0


def cmd_fetch(
    service: InboxService,
    user_id: str,
    max_results: int | None,
    window_days: int | None,
    timeout: float | None,
) -> int:
    """Fetch and stage new transactions."""
    print(f"📥 Fetching transactions for {user_id}...")
    try:
        stats = service.fetch(
            user_id, max_results=max_results, window_days=window_days, timeout=timeout
        )
    except FetchFailedError as e:
        print(f"❌ Fetch failed ({e.kind}): {e}")
        return 1

    print(f"  Messages fetched:  {stats.fetched}")
    print(f"  Filtered out:      {stats.filtered}")
    print(f"  Parsed:            {stats.parsed}")
    print(f"  Duplicates:        {stats.deduped_away}")
    print(f"\n✓ {stats.new} new transaction(s) staged for review")
    return 0


def cmd_pending(service: InboxService, user_id: str, as_json: bool) -> int:
    """List pending transactions."""
    records = service.list_pending(user_id)

    if as_json:
        print(json.dumps([record.to_dict() for record in records], indent=2))
        return 0

    if not records:
        print("✓ Nothing to review")
        return 0

    for record in records:
        icon = CONFIDENCE_ICONS.get(record.confidence.value, "⚪")
        sign = "-" if record.direction.value == "debit" else "+"
        print(
            f"  {icon} [{record.id}] {record.occurred_on} {sign}{record.amount} {record.currency} "
            f"{record.vendor} ({record.category})"
        )
        if record.snippet:
            print(f"      {record.snippet}")
    print(f"\n{len(records)} transaction(s) pending review")
    return 0


def cmd_edit(service: InboxService, user_id: str, pending_id: int, fields: dict) -> int:
    """Edit a pending transaction."""
    changes = {name: value for name, value in fields.items() if value is not None}
    if not changes:
        print("❌ Nothing to change (use --vendor, --category, --amount, --date, --description)")
        return 1
    try:
        record = service.update_pending(user_id, pending_id, **changes)
    except ValueError as e:
        print(f"❌ {e}")
        return 1
    print(f"✓ Updated [{record.id}] {record.occurred_on} {record.amount} {record.vendor}")
    return 0


def cmd_delete(service: InboxService, user_id: str, pending_id: int) -> int:
    """Soft delete a pending transaction."""
    service.delete_pending(user_id, pending_id)
    print(f"🗑️  Deleted [{pending_id}]")
    return 0


def cmd_confirm(service: InboxService, user_id: str, pending_ids: list[int]) -> int:
    """Confirm pending transactions."""
    result = service.confirm_pending(user_id, pending_ids)
    for pending_id in result.confirmed:
        print(f"  ✓ [{pending_id}] recorded in ledger")
    for pending_id, reason in result.skipped:
        print(f"  ⚠️  [{pending_id}] skipped: {reason}")
    print(f"\n✓ Confirmed {len(result.confirmed)}, skipped {len(result.skipped)}")
    return 0 if not result.skipped else 1


def cmd_revoke(service: InboxService, user_id: str) -> int:
    """Disconnect and purge."""
    try:
        purged = service.revoke(user_id)
    except RevocationError as e:
        print(f"⚠️  {e}")
        return 1
    print(f"✓ Disconnected {user_id}, removed {purged} unconfirmed transaction(s)")
    return 0


def cmd_sync_all(service: InboxService, config: Config, loop: bool) -> int:
    """Scheduled sync for every connected user."""
    scheduler = service.scheduler()

    if loop:
        stop_event = threading.Event()
        try:
            scheduler.run_forever(stop_event, config.fetch.scheduler_interval_minutes * 60)
        except KeyboardInterrupt:
            stop_event.set()
            print("\n⏹️  Stopped")
        return 0

    report = scheduler.run_once()
    if report is None:
        print("⚠️  A sync is already running")
        return 1

    for user_id, stats in report.synced.items():
        print(f"  ✓ {user_id}: {stats.new} new")
    for user_id, kind in report.failed.items():
        print(f"  ❌ {user_id}: {kind}")
    for user_id in report.skipped:
        print(f"  ⏭️  {user_id}: fetch in progress")
    print(f"\n✓ Synced {len(report.synced)} user(s)")
    return 0 if not report.failed else 1


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return 1

    if parsed.command == "init-config":
        return cmd_init_config(parsed.config)

    # Load config
    try:
        config = load_config(parsed.config)
        service = InboxService.from_config(config)
    except Exception as e:
        print(f"❌ Failed to load config: {e}")
        return 1

    # Route to command
    try:
        if parsed.command == "status":
            return cmd_status(service, parsed.user)
        elif parsed.command == "connect":
            return cmd_connect(service, parsed.user)
        elif parsed.command == "callback":
            return cmd_callback(service, parsed.user, parsed.code, parsed.state)
        elif parsed.command == "fetch":
            return cmd_fetch(service, parsed.user, parsed.max_results, parsed.days, parsed.timeout)
        elif parsed.command == "pending":
            return cmd_pending(service, parsed.user, parsed.json)
        elif parsed.command == "edit":
            fields = {
                "vendor": parsed.vendor,
                "category": parsed.category,
                "amount": parsed.amount,
                "date": parsed.date,
                "description": parsed.description,
            }
            return cmd_edit(service, parsed.user, parsed.id, fields)
        elif parsed.command == "delete":
            return cmd_delete(service, parsed.user, parsed.id)
        elif parsed.command == "confirm":
            return cmd_confirm(service, parsed.user, parsed.ids)
        elif parsed.command == "revoke":
            return cmd_revoke(service, parsed.user)
        elif parsed.command == "sync-all":
            return cmd_sync_all(service, config, parsed.loop)
        else:
            parser.print_help()
            return 1
    except GmailLedgerError as e:
        print(f"❌ {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
