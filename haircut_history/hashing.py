"""Content hashing for change detection.

The hash covers business fields only. Sync metadata (id, status, sync
timestamps, created/updated timestamps) and server-derived counters are left
out, so two copies of the same logical content hash equally wherever they
came from. The digest format matches what the server reports in its sync
snapshot: base64 of SHA-256, truncated to 16 characters.
"""

import base64
import hashlib
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .types import CachedEntity, HaircutRecord, Profile

HASH_LENGTH = 16


def _normalize_datetime(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _normalize_price(value: Optional[float]) -> Optional[float]:
    return None if value is None else float(value)


def profile_hash_fields(profile: Profile) -> Dict[str, Any]:
    return {
        "name": profile.name,
        "description": profile.description,
        "measurements": [
            {
                "area": m.area,
                "guardSize": m.guard_size,
                "technique": m.technique,
                "notes": m.notes,
                "stepOrder": m.step_order,
            }
            for m in profile.measurements
        ],
        "avatarUrl": profile.avatar_url,
        "imageUrl1": profile.image_url1,
        "imageUrl2": profile.image_url2,
        "imageUrl3": profile.image_url3,
    }


def record_hash_fields(record: HaircutRecord) -> Dict[str, Any]:
    return {
        "date": _normalize_datetime(record.date),
        "stylistName": record.stylist_name,
        "location": record.location,
        "notes": record.notes,
        "price": _normalize_price(record.price),
        "durationMinutes": record.duration_minutes,
        "photoUrls": list(record.photo_urls),
    }


def hash_fields(fields: Dict[str, Any]) -> str:
    """Digest a dict of business fields. Key order does not matter."""
    canonical = json.dumps(fields, sort_keys=True, separators=(",", ":"), default=str)
    digest = hashlib.sha256(canonical.encode("utf-8")).digest()
    return base64.b64encode(digest).decode("ascii")[:HASH_LENGTH]


def content_hash(entity: CachedEntity) -> str:
    """Compute the content hash of a profile or haircut record."""
    if isinstance(entity, Profile):
        return hash_fields(profile_hash_fields(entity))
    if isinstance(entity, HaircutRecord):
        return hash_fields(record_hash_fields(entity))
    raise TypeError(f"Cannot hash {type(entity).__name__}")
