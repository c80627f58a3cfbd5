"""
Shared types for haircut-history.

Cached entities, queue rows, sync snapshot entries and sync results live here.
These are the shared vocabulary between the local store, the reconciler, the
API client and the data service.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Set, Union

# === Shared Utility Functions ===


def utc_now() -> str:
    """Get current timestamp as ISO string in UTC."""
    return datetime.now(timezone.utc).isoformat()


def parse_datetime(s: Optional[str]) -> Optional[datetime]:
    """Parse ISO datetime string. Naive values are treated as UTC."""
    if not s:
        return None
    try:
        value = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except (TypeError, ValueError):
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def format_datetime(value: Optional[datetime]) -> Optional[str]:
    """Format a datetime as UTC ISO string (None passes through)."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


# === Enums ===


class SyncStatus(str, Enum):
    """Sync status of a cached entity."""

    SYNCED = "synced"  # Matches the server
    PENDING_UPLOAD = "pending_upload"  # Local create/update not yet pushed
    PENDING_DELETE = "pending_delete"  # Deleted locally, delete not yet pushed


class OperationType(str, Enum):
    """Kind of queued mutation."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class EntityType(str, Enum):
    """Kind of synchronized entity."""

    PROFILE = "profile"
    HAIRCUT_RECORD = "haircut_record"


class SyncState(str, Enum):
    """State of a sync pass."""

    IDLE = "idle"
    PUSHING = "pushing"
    PULLING = "pulling"
    RECONCILED = "reconciled"
    FAILED = "failed"


# === Entity Dataclasses ===


@dataclass
class Measurement:
    """One clipper/scissor step of a profile's cut."""

    area: str = ""
    guard_size: str = ""
    technique: str = ""
    notes: str = ""
    step_order: int = 0


@dataclass
class Profile:
    """A person whose haircuts are tracked."""

    id: str
    owner_user_id: str
    name: str
    description: Optional[str] = None
    measurements: List[Measurement] = field(default_factory=list)
    avatar_url: Optional[str] = None
    image_url1: Optional[str] = None
    image_url2: Optional[str] = None
    image_url3: Optional[str] = None
    haircut_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    # Sync metadata
    content_hash: Optional[str] = None
    sync_status: SyncStatus = SyncStatus.SYNCED
    last_synced_at: Optional[datetime] = None

    entity_type = EntityType.PROFILE

    @property
    def owner_or_parent_id(self) -> str:
        return self.owner_user_id


@dataclass
class HaircutRecord:
    """A single haircut visit belonging to a profile."""

    id: str
    profile_id: str
    date: Optional[datetime] = None
    created_by_user_id: str = ""
    stylist_name: Optional[str] = None
    location: Optional[str] = None
    photo_urls: List[str] = field(default_factory=list)
    notes: Optional[str] = None
    price: Optional[float] = None
    duration_minutes: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    # Sync metadata
    content_hash: Optional[str] = None
    sync_status: SyncStatus = SyncStatus.SYNCED
    last_synced_at: Optional[datetime] = None

    entity_type = EntityType.HAIRCUT_RECORD

    @property
    def owner_or_parent_id(self) -> str:
        return self.profile_id


CachedEntity = Union[Profile, HaircutRecord]


# === Sync Types ===


@dataclass
class PendingOperation:
    """A local mutation waiting for confirmation from the server."""

    id: Optional[int]
    operation_type: OperationType
    entity_type: EntityType
    entity_id: str
    parent_id: Optional[str] = None
    payload: Optional[str] = None  # Wire JSON snapshot, None for deletes
    created_at: Optional[datetime] = None
    # Retry tracking
    retry_count: int = 0
    last_error: Optional[str] = None
    last_attempt_at: Optional[datetime] = None


@dataclass
class SyncSnapshotEntry:
    """Lightweight server-side view of one entity."""

    id: str
    content_hash: str
    updated_at: Optional[datetime] = None
    is_deleted: bool = False
    entity_type: EntityType = EntityType.PROFILE
    parent_id: Optional[str] = None  # profileId for haircut records


@dataclass
class SyncSnapshot:
    """Full snapshot returned by the server for one owner."""

    entries: List[SyncSnapshotEntry] = field(default_factory=list)
    server_time: Optional[datetime] = None
    # Entity types the server listed; absence only means deletion for these
    covered_types: Set[EntityType] = field(default_factory=lambda: set(EntityType))


@dataclass
class SyncResult:
    """Result of a sync pass."""

    pushed: int = 0  # Queue entries confirmed by the server
    pulled: int = 0  # Entities fetched and written locally
    deleted: int = 0  # Local rows removed because the server deleted them
    failed: int = 0  # Operations or batches that failed this pass
    conflicts: int = 0  # Server changes held back by unpushed local intent
    errors: List[str] = field(default_factory=list)
    skipped: bool = False  # Another pass was already running
    cancelled: bool = False
    aborted: bool = False  # Local store failure
    state: SyncState = SyncState.IDLE

    @property
    def success(self) -> bool:
        return not self.errors and not self.aborted and not self.cancelled
