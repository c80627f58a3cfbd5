"""Profile and haircut record listing commands for haircut-history CLI."""

import json

from haircut_history.config import resolve_settings
from haircut_history.data_service import DataService
from haircut_history.serializers import profile_to_wire, record_to_wire
from haircut_history.storage import LocalStore
from haircut_history.types import SyncStatus


def _status_marker(entity, stuck_ids) -> str:
    if entity.id in stuck_ids:
        return " ⚠️  not synced"
    if entity.sync_status != SyncStatus.SYNCED:
        return " (pending)"
    return ""


def cmd_profiles(args, store: LocalStore):
    """Handle profiles subcommands."""
    if args.profiles_action == "list":
        service = DataService(store)
        owner_id = args.owner or resolve_settings().get("user_id")
        profiles = service.list_profiles(owner_id)

        if args.json:
            data = []
            for p in profiles:
                item = profile_to_wire(p)
                item["syncStatus"] = p.sync_status.value
                data.append(item)
            print(json.dumps(data, indent=2, default=str))
            return

        if not profiles:
            print("No cached profiles.")
            return

        stuck = service.not_synced_ids()
        for p in profiles:
            print(f"{p.name}  [{p.id}]{_status_marker(p, stuck)}")
            if p.description:
                print(f"  {p.description}")
            if p.measurements:
                print(f"  {len(p.measurements)} measurement step(s)")


def cmd_records(args, store: LocalStore):
    """Handle records subcommands."""
    if args.records_action == "list":
        service = DataService(store)
        records = service.list_records(args.profile_id)

        if args.json:
            data = []
            for r in records:
                item = record_to_wire(r)
                item["syncStatus"] = r.sync_status.value
                data.append(item)
            print(json.dumps(data, indent=2, default=str))
            return

        if not records:
            print(f"No cached records for profile {args.profile_id}.")
            return

        stuck = service.not_synced_ids()
        for r in records:
            when = r.date.date().isoformat() if r.date else "unknown date"
            stylist = f" with {r.stylist_name}" if r.stylist_name else ""
            print(f"{when}{stylist}  [{r.id}]{_status_marker(r, stuck)}")
            details = []
            if r.location:
                details.append(r.location)
            if r.price is not None:
                details.append(f"${r.price:.2f}")
            if r.duration_minutes:
                details.append(f"{r.duration_minutes} min")
            if details:
                print(f"  {' · '.join(details)}")
