"""haircut-history local storage.

SQLite tables for cached entities, the pending operation queue and sync
metadata.
"""

from .queue import DEFAULT_MAX_RETRIES, PendingOperationQueue
from .sqlite import LocalStore

__all__ = [
    "DEFAULT_MAX_RETRIES",
    "LocalStore",
    "PendingOperationQueue",
]
