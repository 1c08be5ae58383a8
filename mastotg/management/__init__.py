"""Management commands for the forwarder."""

from .migration_commands import MigrationCommands
from .admin_commands import AdminCommands

__all__ = [
    "MigrationCommands",
    "AdminCommands"
]
