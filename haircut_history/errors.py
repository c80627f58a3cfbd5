"""Error taxonomy for haircut-history."""

from typing import Optional


class HaircutHistoryError(Exception):
    """Base for all haircut-history errors."""

    pass


class StorageError(HaircutHistoryError):
    """Raised when the local store is unavailable or a write fails."""

    pass


class SyncCancelled(HaircutHistoryError):
    """Raised inside a sync pass when its cancel event is set."""

    pass


class ApiError(HaircutHistoryError):
    """Raised by the remote API client.

    Args:
        message: Human-readable description.
        code: Server error code (e.g. ``NOT_FOUND``), if one was returned.
        status_code: HTTP status, if a response was received.
    """

    def __init__(
        self, message: str, code: Optional[str] = None, status_code: Optional[int] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code


class NetworkError(ApiError):
    """Transport failure: the server could not be reached. Retried next pass."""

    pass


class ServerError(ApiError):
    """The server rejected the request or failed to process it."""

    pass


class Unauthorized(ApiError):
    """Missing, expired or rejected credentials."""

    pass


class NotFound(ApiError):
    """The entity does not exist on the server."""

    pass
