"""Configuration and credential loading for haircut-history.

Settings come from ``<home>/credentials.json`` with environment variables
taking precedence:

- ``HAIRCUT_HISTORY_HOME``: app home (default ``~/.haircut-history``)
- ``HAIRCUT_API_URL``: API base URL
- ``HAIRCUT_AUTH_TOKEN``: bearer token
- ``HAIRCUT_USER_ID``: owner id used for sync passes
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.haircuthistory.app/api"
DB_FILENAME = "cache.db"

# Sync tuning
DEFAULT_MAX_RETRIES = 5
DEFAULT_BATCH_SIZE = 20
DEFAULT_TOKEN_TTL = 300  # seconds


def get_app_home() -> Path:
    """Return the app home directory (not created here)."""
    override = os.environ.get("HAIRCUT_HISTORY_HOME")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".haircut-history"


def get_db_path() -> Path:
    return get_app_home() / DB_FILENAME


def get_credentials_path() -> Path:
    """Get the path to the credentials file."""
    return get_app_home() / "credentials.json"


def load_credentials() -> Optional[Dict[str, Any]]:
    """Load credentials from <home>/credentials.json."""
    creds_path = get_credentials_path()
    if not creds_path.exists():
        return None
    try:
        with open(creds_path) as f:
            data = json.load(f)
    except (json.JSONDecodeError, IOError) as e:
        logger.warning(f"Could not read {creds_path}: {e}")
        return None
    return data if isinstance(data, dict) else None


def save_credentials(credentials: Dict[str, Any]) -> None:
    """Save credentials to <home>/credentials.json."""
    creds_path = get_credentials_path()
    creds_path.parent.mkdir(parents=True, exist_ok=True)
    with open(creds_path, "w") as f:
        json.dump(credentials, f, indent=2)
    # Owner read/write only
    creds_path.chmod(0o600)


def clear_credentials() -> bool:
    """Remove the credentials file. Returns False if there was none."""
    creds_path = get_credentials_path()
    if not creds_path.exists():
        return False
    creds_path.unlink()
    return True


def validate_api_url(url: Optional[str]) -> Optional[str]:
    """Validate an API URL for safe token transmission.

    Rejects non-http/https schemes, URLs with no host, and plaintext HTTP to
    anything but localhost/127.0.0.1.

    Returns:
        The URL without a trailing slash, or ``None`` if rejected.
    """
    if not url:
        return None
    parsed = urlparse(url)
    if parsed.scheme not in {"https", "http"}:
        logger.warning("Invalid api_url scheme; only http/https allowed.")
        return None
    if not parsed.netloc:
        logger.warning("Invalid api_url; missing host.")
        return None
    if parsed.scheme == "http" and (parsed.hostname or "") not in {"localhost", "127.0.0.1"}:
        logger.warning("Refusing non-local http api_url for security.")
        return None
    return url.rstrip("/")


def resolve_settings() -> Dict[str, Any]:
    """Merge credentials file and environment into one settings dict.

    Keys: ``api_url``, ``auth_token``, ``user_id``. Missing values are None;
    an invalid URL is dropped with a warning.
    """
    creds = load_credentials() or {}
    api_url = os.environ.get("HAIRCUT_API_URL") or creds.get("api_url") or DEFAULT_API_URL
    return {
        "api_url": validate_api_url(api_url),
        "auth_token": os.environ.get("HAIRCUT_AUTH_TOKEN") or creds.get("auth_token"),
        "user_id": os.environ.get("HAIRCUT_USER_ID") or creds.get("user_id"),
    }
