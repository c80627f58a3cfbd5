"""Credential commands for haircut-history CLI."""

import json
import sys

from haircut_history.config import (
    DEFAULT_API_URL,
    clear_credentials,
    get_credentials_path,
    load_credentials,
    resolve_settings,
    save_credentials,
    validate_api_url,
)


def _mask_secret(secret: str, prefix: int = 4, suffix: int = 4) -> str:
    """Mask a secret for safe display (never returns the full secret)."""
    if not secret:
        return ""
    if len(secret) <= prefix + suffix:
        return "*" * len(secret)
    return f"{secret[:prefix]}...{secret[-suffix:]}"


def cmd_auth(args):
    """Handle auth subcommands."""
    if args.auth_action == "login":
        api_url = validate_api_url(args.url or DEFAULT_API_URL)
        if not api_url:
            print("✗ API URL must use https (http is only allowed for localhost)")
            sys.exit(1)

        credentials = load_credentials() or {}
        credentials.update(
            {"api_url": api_url, "auth_token": args.token, "user_id": args.user_id}
        )
        save_credentials(credentials)
        print("✓ Credentials saved")
        print(f"  User ID: {args.user_id}")
        print(f"  API:     {api_url}")
        print(f"  Token:   {_mask_secret(args.token)}")
        print()
        print(f"Saved to {get_credentials_path()}")

    elif args.auth_action == "status":
        settings = resolve_settings()
        token = settings.get("auth_token")
        if args.json:
            print(
                json.dumps(
                    {
                        "authenticated": bool(token),
                        "user_id": settings.get("user_id"),
                        "api_url": settings.get("api_url"),
                        "credentials_file": str(get_credentials_path()),
                    },
                    indent=2,
                )
            )
            return

        print(f"{'🟢' if token else '🔴'} Authenticated: {'Yes' if token else 'No'}")
        if settings.get("user_id"):
            print(f"  User ID: {settings['user_id']}")
        print(f"  API:     {settings.get('api_url') or '(invalid or not configured)'}")
        if token:
            print(f"  Token:   {_mask_secret(token)}")

    elif args.auth_action == "logout":
        creds_path = get_credentials_path()
        if clear_credentials():
            print("✓ Logged out")
            print(f"  Removed {creds_path}")
        else:
            print("Already logged out (no credentials found)")
