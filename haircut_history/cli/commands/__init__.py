"""CLI command modules for haircut-history.

Each module holds the handlers for one top-level command.
"""

from haircut_history.cli.commands.auth import cmd_auth
from haircut_history.cli.commands.entities import cmd_profiles, cmd_records
from haircut_history.cli.commands.sync import cmd_sync

__all__ = ["cmd_auth", "cmd_profiles", "cmd_records", "cmd_sync"]
