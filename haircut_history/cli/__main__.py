"""
haircut-history CLI - inspect the local cache and drive sync passes.

Usage:
    haircut-history auth login --token TOKEN --user-id ID [--url URL]
    haircut-history auth status [--json]
    haircut-history auth logout
    haircut-history sync run [--owner ID] [--force] [--json]
    haircut-history sync status [--json]
    haircut-history sync failed [--json]
    haircut-history sync requeue [IDS...]
    haircut-history sync discard ID
    haircut-history profiles list [--owner ID] [--json]
    haircut-history records list PROFILE_ID [--json]
"""

import argparse
import logging
import sys
from pathlib import Path

from haircut_history.cli.commands import cmd_auth, cmd_profiles, cmd_records, cmd_sync
from haircut_history.config import DEFAULT_API_URL
from haircut_history.errors import HaircutHistoryError, StorageError
from haircut_history.storage import LocalStore

# Set up logging
logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="haircut-history",
        description="Offline-first haircut history cache",
    )
    parser.add_argument("--db", type=Path, default=None, help="Path to the local cache database")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # auth
    p_auth = subparsers.add_parser("auth", help="Manage API credentials")
    auth_sub = p_auth.add_subparsers(dest="auth_action", required=True)

    auth_login = auth_sub.add_parser("login", help="Save API URL, token and user id")
    auth_login.add_argument("--token", "-t", required=True, help="Bearer token")
    auth_login.add_argument("--user-id", "-u", required=True, help="Owner user id")
    auth_login.add_argument("--url", help=f"API base URL (default: {DEFAULT_API_URL})")

    auth_status = auth_sub.add_parser("status", help="Show the effective credentials")
    auth_status.add_argument("--json", "-j", action="store_true", help="Output as JSON")

    auth_sub.add_parser("logout", help="Remove saved credentials")

    # sync
    p_sync = subparsers.add_parser("sync", help="Sync the local cache with the server")
    sync_sub = p_sync.add_subparsers(dest="sync_action", required=True)

    sync_run = sync_sub.add_parser("run", help="Push pending changes and pull server changes")
    sync_run.add_argument("--owner", "-o", help="Owner user id (default: configured user)")
    sync_run.add_argument("--force", "-f", action="store_true",
                          help="Wait for an in-flight pass instead of skipping")
    sync_run.add_argument("--json", "-j", action="store_true", help="Output as JSON")

    sync_status = sync_sub.add_parser("status", help="Show pending operations and last sync")
    sync_status.add_argument("--json", "-j", action="store_true", help="Output as JSON")

    sync_failed = sync_sub.add_parser("failed", help="List operations that exceeded max retries")
    sync_failed.add_argument("--json", "-j", action="store_true", help="Output as JSON")

    sync_requeue = sync_sub.add_parser("requeue", help="Reset retries so failed operations run again")
    sync_requeue.add_argument("ids", nargs="*", type=int, help="Operation ids (default: all)")

    sync_discard = sync_sub.add_parser("discard", help="Abandon a queued operation")
    sync_discard.add_argument("id", type=int, help="Operation id")

    # profiles
    p_profiles = subparsers.add_parser("profiles", help="Cached profiles")
    profiles_sub = p_profiles.add_subparsers(dest="profiles_action", required=True)
    profiles_list = profiles_sub.add_parser("list", help="List cached profiles")
    profiles_list.add_argument("--owner", "-o", help="Owner user id (default: configured user)")
    profiles_list.add_argument("--json", "-j", action="store_true", help="Output as JSON")

    # records
    p_records = subparsers.add_parser("records", help="Cached haircut records")
    records_sub = p_records.add_subparsers(dest="records_action", required=True)
    records_list = records_sub.add_parser("list", help="List cached records of a profile")
    records_list.add_argument("profile_id", help="Profile id")
    records_list.add_argument("--json", "-j", action="store_true", help="Output as JSON")

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    # Credential commands don't need the local cache
    if args.command == "auth":
        cmd_auth(args)
        return

    try:
        store = LocalStore(db_path=args.db)
    except StorageError as e:
        logger.error(f"Failed to open local cache: {e}")
        sys.exit(1)

    # Dispatch with error handling
    try:
        if args.command == "sync":
            cmd_sync(args, store)
        elif args.command == "profiles":
            cmd_profiles(args, store)
        elif args.command == "records":
            cmd_records(args, store)
    except HaircutHistoryError as e:
        logger.error(f"Command failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
