"""
haircut-history - offline-first cache and sync core.

Cached profiles and haircut records live in a local SQLite store; local
edits are queued and replayed against the remote API by the reconciler.
"""

from .data_service import DataService
from .storage import LocalStore
from .sync import Reconciler

try:
    from importlib.metadata import version

    __version__ = version("haircut-history")
except Exception:
    __version__ = "0.0.0"

__all__ = ["DataService", "LocalStore", "Reconciler"]
