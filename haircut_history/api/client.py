"""HTTP client for the haircut-history API.

Responses come wrapped in an envelope::

    {"success": true, "data": ..., "error": null}
    {"success": false, "data": null, "error": {"code": "NOT_FOUND", "message": "..."}}

``ApiClient`` unwraps the envelope and maps failures onto the error taxonomy
in :mod:`haircut_history.errors`. A 401 is retried once with a refreshed token.
"""

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from ..errors import ApiError, NetworkError, NotFound, ServerError, Unauthorized
from ..serializers import (
    profile_from_wire,
    profile_to_wire,
    record_from_wire,
    record_to_wire,
    snapshot_from_wire,
)
from ..types import HaircutRecord, Profile, SyncSnapshot
from .auth import TokenCache

logger = logging.getLogger(__name__)

UNAUTHORIZED_CODES = frozenset({"UNAUTHORIZED", "TOKEN_EXPIRED"})
NOT_FOUND_CODES = frozenset({"NOT_FOUND"})


def _segment(value: str) -> str:
    return quote(value, safe="")


class ApiClient:
    """Remote API over HTTP. Implements ``RemoteApi``.

    Args:
        base_url: API root, e.g. ``https://api.example.com/api``.
        token_cache: Source of bearer tokens, or None for anonymous calls.
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport (``httpx.MockTransport`` in tests).
    """

    DEFAULT_TIMEOUT = 30.0

    def __init__(
        self,
        base_url: str,
        token_cache: Optional[TokenCache] = None,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token_cache = token_cache
        self._client = httpx.Client(
            base_url=self.base_url + "/",
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "ApiClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # === Transport ===

    def _headers(self) -> Dict[str, str]:
        if self.token_cache is None:
            return {}
        return {"Authorization": f"Bearer {self.token_cache.get()}"}

    def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            return self._client.request(method, path, headers=self._headers(), **kwargs)
        except httpx.TransportError as e:
            raise NetworkError(f"{method} {path} failed: {e}") from e

    def _request(self, method: str, path: str, **kwargs) -> Any:
        response = self._send(method, path, **kwargs)
        if response.status_code == 401 and self.token_cache is not None:
            logger.debug(f"{method} {path} returned 401, refreshing token and retrying")
            self.token_cache.invalidate()
            response = self._send(method, path, **kwargs)
        return self._unwrap(method, path, response)

    def _unwrap(self, method: str, path: str, response: httpx.Response) -> Any:
        try:
            body = response.json() if response.content else None
        except ValueError:
            body = None

        if isinstance(body, dict) and "success" in body:
            ok = bool(body.get("success"))
            data = body.get("data")
            error = body.get("error") or {}
        else:
            ok = True
            data = body
            error = {}

        if response.is_success and ok:
            return data

        code = error.get("code") if isinstance(error, dict) else None
        message = (error.get("message") if isinstance(error, dict) else None) or (
            f"{method} {path} returned HTTP {response.status_code}"
        )
        raise self._error_for(response.status_code, code, message)

    @staticmethod
    def _error_for(status_code: int, code: Optional[str], message: str) -> ApiError:
        if status_code == 401 or code in UNAUTHORIZED_CODES:
            return Unauthorized(message, code=code, status_code=status_code)
        if status_code == 404 or code in NOT_FOUND_CODES:
            return NotFound(message, code=code, status_code=status_code)
        return ServerError(message, code=code, status_code=status_code)

    # === Health ===

    def health(self) -> bool:
        """True if the API answers its health check."""
        try:
            self._request("GET", "health")
            return True
        except ApiError as e:
            logger.debug(f"Health check failed: {e}")
            return False

    # === Sync ===

    def fetch_sync_snapshot(self, owner_id: str) -> SyncSnapshot:
        data = self._request("GET", "sync", params={"ownerId": owner_id})
        return snapshot_from_wire(data if isinstance(data, dict) else {})

    def fetch_profiles_by_ids(self, ids: List[str]) -> List[Profile]:
        if not ids:
            return []
        data = self._request("POST", "profiles/batch", json={"ids": list(ids)})
        return [profile_from_wire(item) for item in (data or []) if isinstance(item, dict)]

    def fetch_records_by_ids(self, profile_id: str, ids: List[str]) -> List[HaircutRecord]:
        if not ids:
            return []
        data = self._request(
            "POST", f"profiles/{_segment(profile_id)}/haircuts/batch", json={"ids": list(ids)}
        )
        return [record_from_wire(item) for item in (data or []) if isinstance(item, dict)]

    # === Profiles ===

    def create_profile(self, profile: Profile) -> Profile:
        data = self._request("POST", "profiles", json=profile_to_wire(profile))
        return profile_from_wire(data) if isinstance(data, dict) else profile

    def update_profile(self, profile: Profile) -> Profile:
        data = self._request(
            "PUT", f"profiles/{_segment(profile.id)}", json=profile_to_wire(profile)
        )
        return profile_from_wire(data) if isinstance(data, dict) else profile

    def delete_profile(self, profile_id: str) -> None:
        self._request("DELETE", f"profiles/{_segment(profile_id)}")

    # === Haircut records ===

    def create_record(self, profile_id: str, record: HaircutRecord) -> HaircutRecord:
        data = self._request(
            "POST", f"profiles/{_segment(profile_id)}/haircuts", json=record_to_wire(record)
        )
        return record_from_wire(data) if isinstance(data, dict) else record

    def update_record(self, profile_id: str, record: HaircutRecord) -> HaircutRecord:
        data = self._request(
            "PUT",
            f"profiles/{_segment(profile_id)}/haircuts/{_segment(record.id)}",
            json=record_to_wire(record),
        )
        return record_from_wire(data) if isinstance(data, dict) else record

    def delete_record(self, profile_id: str, record_id: str) -> None:
        self._request(
            "DELETE", f"profiles/{_segment(profile_id)}/haircuts/{_segment(record_id)}"
        )
