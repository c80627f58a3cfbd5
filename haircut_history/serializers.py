"""Wire-format conversion for haircut-history.

The server speaks camelCase JSON. These helpers convert between that shape
and the dataclasses in :mod:`haircut_history.types`. The same wire shape is
used for queued operation payloads, so a payload can be replayed against the
API without re-reading the local row.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from .types import (
    CachedEntity,
    EntityType,
    HaircutRecord,
    Measurement,
    Profile,
    SyncSnapshot,
    SyncSnapshotEntry,
    format_datetime,
    parse_datetime,
)

logger = logging.getLogger(__name__)


def _to_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.debug("Ignoring non-numeric value %r", value)
        return None


def _to_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.debug("Ignoring non-integer value %r", value)
        return None


# === Measurements ===


def measurement_to_wire(m: Measurement) -> Dict[str, Any]:
    return {
        "area": m.area,
        "guardSize": m.guard_size,
        "technique": m.technique,
        "notes": m.notes,
        "stepOrder": m.step_order,
    }


def measurement_from_wire(data: Dict[str, Any]) -> Measurement:
    return Measurement(
        area=data.get("area") or "",
        guard_size=data.get("guardSize") or "",
        technique=data.get("technique") or "",
        notes=data.get("notes") or "",
        step_order=_to_int(data.get("stepOrder")) or 0,
    )


def measurements_from_wire(items: Optional[List[Dict[str, Any]]]) -> List[Measurement]:
    return [measurement_from_wire(item) for item in (items or []) if isinstance(item, dict)]


# === Profiles ===


def profile_to_wire(profile: Profile) -> Dict[str, Any]:
    """Convert a Profile to its wire dict (sync metadata excluded except the hash)."""
    return {
        "id": profile.id,
        "ownerUserId": profile.owner_user_id,
        "name": profile.name,
        "description": profile.description,
        "measurements": [measurement_to_wire(m) for m in profile.measurements],
        "avatarUrl": profile.avatar_url,
        "imageUrl1": profile.image_url1,
        "imageUrl2": profile.image_url2,
        "imageUrl3": profile.image_url3,
        "haircutCount": profile.haircut_count,
        "createdAt": format_datetime(profile.created_at),
        "updatedAt": format_datetime(profile.updated_at),
        "contentHash": profile.content_hash,
    }


def profile_from_wire(data: Dict[str, Any]) -> Profile:
    """Build a Profile from a server or payload dict."""
    return Profile(
        id=data.get("id") or "",
        owner_user_id=data.get("ownerUserId") or "",
        name=data.get("name") or "",
        description=data.get("description"),
        measurements=measurements_from_wire(data.get("measurements")),
        avatar_url=data.get("avatarUrl"),
        image_url1=data.get("imageUrl1"),
        image_url2=data.get("imageUrl2"),
        image_url3=data.get("imageUrl3"),
        haircut_count=_to_int(data.get("haircutCount")) or 0,
        created_at=parse_datetime(data.get("createdAt")),
        updated_at=parse_datetime(data.get("updatedAt")),
        content_hash=data.get("contentHash"),
    )


# === Haircut records ===


def record_to_wire(record: HaircutRecord) -> Dict[str, Any]:
    """Convert a HaircutRecord to its wire dict."""
    return {
        "id": record.id,
        "profileId": record.profile_id,
        "createdByUserId": record.created_by_user_id,
        "date": format_datetime(record.date),
        "stylistName": record.stylist_name,
        "location": record.location,
        "photoUrls": list(record.photo_urls),
        "notes": record.notes,
        "price": record.price,
        "durationMinutes": record.duration_minutes,
        "createdAt": format_datetime(record.created_at),
        "updatedAt": format_datetime(record.updated_at),
        "contentHash": record.content_hash,
    }


def record_from_wire(data: Dict[str, Any]) -> HaircutRecord:
    """Build a HaircutRecord from a server or payload dict."""
    return HaircutRecord(
        id=data.get("id") or "",
        profile_id=data.get("profileId") or "",
        created_by_user_id=data.get("createdByUserId") or "",
        date=parse_datetime(data.get("date")),
        stylist_name=data.get("stylistName"),
        location=data.get("location"),
        photo_urls=[u for u in (data.get("photoUrls") or []) if isinstance(u, str)],
        notes=data.get("notes"),
        price=_to_float(data.get("price")),
        duration_minutes=_to_int(data.get("durationMinutes")),
        created_at=parse_datetime(data.get("createdAt")),
        updated_at=parse_datetime(data.get("updatedAt")),
        content_hash=data.get("contentHash"),
    )


# === Generic dispatch ===


def entity_to_wire(entity: CachedEntity) -> Dict[str, Any]:
    if isinstance(entity, Profile):
        return profile_to_wire(entity)
    if isinstance(entity, HaircutRecord):
        return record_to_wire(entity)
    raise TypeError(f"Unsupported entity type: {type(entity).__name__}")


def entity_from_wire(entity_type: EntityType, data: Dict[str, Any]) -> CachedEntity:
    if entity_type == EntityType.PROFILE:
        return profile_from_wire(data)
    if entity_type == EntityType.HAIRCUT_RECORD:
        return record_from_wire(data)
    raise ValueError(f"Unsupported entity type: {entity_type}")


def dump_payload(entity: CachedEntity) -> str:
    """Serialize an entity snapshot for the pending-operation queue."""
    return json.dumps(entity_to_wire(entity), sort_keys=True)


def load_payload(entity_type: EntityType, payload: Optional[str]) -> Optional[CachedEntity]:
    """Deserialize a queued payload. Returns None for empty or corrupt payloads."""
    if not payload:
        return None
    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        logger.warning("Corrupt queued payload for %s", entity_type.value)
        return None
    if not isinstance(data, dict):
        return None
    return entity_from_wire(entity_type, data)


# === Sync snapshot ===


def snapshot_entry_from_wire(data: Dict[str, Any], entity_type: EntityType) -> SyncSnapshotEntry:
    return SyncSnapshotEntry(
        id=data.get("id") or "",
        content_hash=data.get("contentHash") or "",
        updated_at=parse_datetime(data.get("updatedAt")),
        is_deleted=bool(data.get("isDeleted", False)),
        entity_type=entity_type,
        parent_id=data.get("profileId"),
    )


def snapshot_from_wire(data: Dict[str, Any]) -> SyncSnapshot:
    """Parse the ``GET sync`` response body.

    Expected shape::

        {"profiles": [{id, contentHash, updatedAt, isDeleted}],
         "haircutRecords": [{id, profileId, contentHash, updatedAt, isDeleted}],
         "serverTime": "..."}

    A missing list leaves that entity type out of ``covered_types``.
    """
    entries = [
        snapshot_entry_from_wire(item, EntityType.PROFILE)
        for item in (data.get("profiles") or [])
        if isinstance(item, dict) and item.get("id")
    ]
    entries.extend(
        snapshot_entry_from_wire(item, EntityType.HAIRCUT_RECORD)
        for item in (data.get("haircutRecords") or [])
        if isinstance(item, dict) and item.get("id")
    )
    covered = {
        entity_type
        for key, entity_type in (
            ("profiles", EntityType.PROFILE),
            ("haircutRecords", EntityType.HAIRCUT_RECORD),
        )
        if isinstance(data.get(key), list)
    }
    return SyncSnapshot(
        entries=entries,
        server_time=parse_datetime(data.get("serverTime")),
        covered_types=covered,
    )
