"""Database module for the forwarding ledger."""

from .models import Base, ForwardedPost, Delivery, PollState, SchemaMigration
from .connection import (
    DatabaseManager, db_manager, init_database, close_database, utcnow
)
from .migrations import (
    MIGRATIONS, Migration, MigrationError, apply_migrations, current_version, migration_status
)

__all__ = [
    "Base",
    "ForwardedPost",
    "Delivery",
    "PollState",
    "SchemaMigration",
    "DatabaseManager",
    "db_manager",
    "init_database",
    "close_database",
    "utcnow",
    "MIGRATIONS",
    "Migration",
    "MigrationError",
    "apply_migrations",
    "current_version",
    "migration_status"
]
