"""Sync commands for haircut-history CLI."""

import json
import logging
import sys
from dataclasses import asdict
from typing import Any, Dict, Optional

from haircut_history.api import ApiClient, TokenCache
from haircut_history.config import resolve_settings
from haircut_history.storage import DEFAULT_MAX_RETRIES, LocalStore
from haircut_history.sync import Reconciler
from haircut_history.types import PendingOperation, SyncResult, format_datetime

logger = logging.getLogger(__name__)


def build_api_client(settings: Dict[str, Any]) -> ApiClient:
    """API client for the configured URL and token."""
    return ApiClient(settings["api_url"], TokenCache.static(settings["auth_token"]))


def _require_remote(settings: Dict[str, Any]) -> None:
    if not settings.get("api_url"):
        print("✗ No valid API URL configured (set HAIRCUT_API_URL)")
        sys.exit(1)
    if not settings.get("auth_token"):
        print("✗ Not authenticated (set HAIRCUT_AUTH_TOKEN or add it to credentials.json)")
        sys.exit(1)


def _result_to_dict(result: SyncResult) -> Dict[str, Any]:
    data = asdict(result)
    data["state"] = result.state.value
    data["success"] = result.success
    return data


def _op_to_dict(op: PendingOperation) -> Dict[str, Any]:
    return {
        "id": op.id,
        "operation": op.operation_type.value,
        "entity_type": op.entity_type.value,
        "entity_id": op.entity_id,
        "parent_id": op.parent_id,
        "retry_count": op.retry_count,
        "last_error": op.last_error,
        "last_attempt_at": format_datetime(op.last_attempt_at),
        "created_at": format_datetime(op.created_at),
    }


def cmd_sync(args, store: LocalStore):
    """Handle sync subcommands."""
    if args.sync_action == "run":
        _sync_run(args, store)
    elif args.sync_action == "status":
        _sync_status(args, store)
    elif args.sync_action == "failed":
        _sync_failed(args, store)
    elif args.sync_action == "requeue":
        count = store.requeue_operations(args.ids or None)
        print(f"✓ Requeued {count} operation(s)")
    elif args.sync_action == "discard":
        if store.discard_operation(args.id):
            print(f"✓ Discarded operation {args.id}")
        else:
            print(f"✗ Operation {args.id} not found")
            sys.exit(1)


def _sync_run(args, store: LocalStore):
    settings = resolve_settings()
    owner_id: Optional[str] = args.owner or settings.get("user_id")
    if not owner_id:
        print("✗ No owner id (pass --owner or set HAIRCUT_USER_ID)")
        sys.exit(1)
    _require_remote(settings)

    client = build_api_client(settings)
    try:
        reconciler = Reconciler(store, client)
        if args.force:
            result = reconciler.force_sync(owner_id)
        else:
            result = reconciler.sync(owner_id)
    finally:
        client.close()

    if args.json:
        print(json.dumps(_result_to_dict(result), indent=2, default=str))
    elif result.skipped:
        print("ℹ️  Sync already in progress, skipped")
    else:
        icon = "✓" if result.success else "⚠️ "
        print(f"{icon} Sync {result.state.value}")
        print(f"  Pushed: {result.pushed}  Pulled: {result.pulled}  Deleted: {result.deleted}")
        if result.failed:
            print(f"  Failed: {result.failed}")
        if result.conflicts:
            print(f"  Held back (unpushed local changes): {result.conflicts}")
        for error in result.errors[:5]:
            print(f"   - {error}")
        if len(result.errors) > 5:
            print(f"   ... and {len(result.errors) - 5} more")

    if result.aborted:
        sys.exit(1)


def _sync_status(args, store: LocalStore):
    settings = resolve_settings()
    queue_status = store.get_queue_status()
    last_sync = store.get_last_sync_time()

    backend_connected = None
    if settings.get("api_url") and settings.get("auth_token"):
        client = build_api_client(settings)
        try:
            backend_connected = client.health()
        finally:
            client.close()

    if args.json:
        status_data = {
            "pending_operations": queue_status["pending"],
            "failed_operations": queue_status["failed"],
            "by_entity": queue_status["by_entity"],
            "by_operation": queue_status["by_operation"],
            "last_sync_time": format_datetime(last_sync),
            "api_url": settings.get("api_url") or "(not configured)",
            "user_id": settings.get("user_id"),
            "backend_connected": backend_connected,
            "authenticated": bool(settings.get("auth_token")),
        }
        print(json.dumps(status_data, indent=2, default=str))
        return

    print("Sync Status")
    print("=" * 50)
    print()

    if backend_connected is None:
        print("⚪ Backend: not configured")
    else:
        conn_icon = "🟢" if backend_connected else "🔴"
        print(f"{conn_icon} Backend: {'Connected' if backend_connected else 'Unreachable'}")
        print(f"   URL: {settings['api_url']}")
    if settings.get("user_id"):
        print(f"   User: {settings['user_id']}")
    print()

    pending = queue_status["pending"]
    pending_icon = "🟢" if pending == 0 else "🟡" if pending < 10 else "🟠"
    print(f"{pending_icon} Pending operations: {pending}")
    for entity_type, count in sorted(queue_status["by_entity"].items()):
        print(f"   {entity_type}: {count}")
    if queue_status["failed"]:
        print(f"🔴 Failed operations: {queue_status['failed']} (see `sync failed`)")

    if last_sync:
        print(f"🕐 Last sync: {format_datetime(last_sync)}")
    else:
        print("🕐 Last sync: never")


def _sync_failed(args, store: LocalStore):
    failed = store.get_failed_operations(min_retries=DEFAULT_MAX_RETRIES)

    if args.json:
        print(json.dumps([_op_to_dict(op) for op in failed], indent=2, default=str))
        return

    if not failed:
        print("✓ No failed operations")
        return

    print(f"Failed operations ({len(failed)}):")
    for op in failed:
        print(
            f"  [{op.id}] {op.operation_type.value} {op.entity_type.value}:{op.entity_id} "
            f"(retries: {op.retry_count})"
        )
        if op.last_error:
            print(f"       {op.last_error[:100]}")
    print()
    print("Use `sync requeue [IDS]` to retry or `sync discard ID` to abandon.")
