"""HTTP client for the haircut-history API."""

from .auth import TokenCache
from .client import ApiClient

__all__ = ["ApiClient", "TokenCache"]
