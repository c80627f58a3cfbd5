"""
Interface contracts for the remote side of sync.

The reconciler only depends on ``RemoteApi``. ``ApiClient`` implements it
over HTTP; tests use an in-memory fake.

Error contract: every method raises one of ``Unauthorized``, ``NotFound``,
``NetworkError`` or ``ServerError`` (all ``ApiError`` subclasses).
"""

from typing import List, Protocol, runtime_checkable

from .types import HaircutRecord, Profile, SyncSnapshot


@runtime_checkable
class RemoteApi(Protocol):
    """Remote operations the sync core consumes."""

    def fetch_sync_snapshot(self, owner_id: str) -> SyncSnapshot:
        """Lightweight ``{id, hash, updatedAt, deleted}`` listing for one owner."""
        ...

    def fetch_profiles_by_ids(self, ids: List[str]) -> List[Profile]:
        ...

    def fetch_records_by_ids(self, profile_id: str, ids: List[str]) -> List[HaircutRecord]:
        ...

    def create_profile(self, profile: Profile) -> Profile:
        """Create a profile. The returned copy may carry a server-assigned id."""
        ...

    def update_profile(self, profile: Profile) -> Profile:
        ...

    def delete_profile(self, profile_id: str) -> None:
        ...

    def create_record(self, profile_id: str, record: HaircutRecord) -> HaircutRecord:
        """Create a haircut record under a profile."""
        ...

    def update_record(self, profile_id: str, record: HaircutRecord) -> HaircutRecord:
        ...

    def delete_record(self, profile_id: str, record_id: str) -> None:
        ...
