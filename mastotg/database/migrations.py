"""
Versioned schema migrations for the ledger database.

Migrations are applied in version order at startup. Each applied version is
recorded in ``schema_migrations``; a database that already carries every known
version is left untouched. The DDL uses ``IF NOT EXISTS`` so that a migration
interrupted between its DDL and its bookkeeping row can simply be re-run.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from .connection import utcnow

logger = logging.getLogger(__name__)


class MigrationError(Exception):
    """Raised when the schema cannot be brought to a known version."""


@dataclass(frozen=True)
class Migration:
    version: int
    name: str
    statements: Tuple[str, ...]


MIGRATIONS: Tuple[Migration, ...] = (
    Migration(
        version=1,
        name="create_forwarded_posts",
        statements=(
            """
            CREATE TABLE IF NOT EXISTS forwarded_posts (
                post_id TEXT PRIMARY KEY,
                forwarded_at TIMESTAMP NOT NULL
            )
            """,
        ),
    ),
    Migration(
        version=2,
        name="create_deliveries",
        statements=(
            """
            CREATE TABLE IF NOT EXISTS deliveries (
                post_id TEXT NOT NULL,
                chat_id VARCHAR(255) NOT NULL,
                message_id BIGINT,
                delivered_at TIMESTAMP NOT NULL,
                PRIMARY KEY (post_id, chat_id)
            )
            """,
        ),
    ),
    Migration(
        version=3,
        name="index_forwarded_at",
        statements=(
            "CREATE INDEX IF NOT EXISTS idx_forwarded_posts_forwarded_at ON forwarded_posts (forwarded_at)",
            "CREATE INDEX IF NOT EXISTS idx_deliveries_delivered_at ON deliveries (delivered_at)",
        ),
    ),
    Migration(
        version=4,
        name="create_poll_state",
        statements=(
            """
            CREATE TABLE IF NOT EXISTS poll_state (
                pk INTEGER PRIMARY KEY CHECK (pk = 1),
                initialized_at TIMESTAMP NOT NULL
            )
            """,
            # A ledger that already has entries belongs to a poller that has run before
            """
            INSERT OR IGNORE INTO poll_state (pk, initialized_at)
            SELECT 1, forwarded_at FROM forwarded_posts ORDER BY forwarded_at LIMIT 1
            """,
        ),
    ),
)

_CREATE_SCHEMA_MIGRATIONS = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    version INTEGER PRIMARY KEY,
    name VARCHAR(255) NOT NULL,
    applied_at TIMESTAMP NOT NULL
)
"""


def validate_migrations(migrations: Sequence[Migration]) -> None:
    """Versions must start at 1 and increase by one."""
    for expected, migration in enumerate(migrations, start=1):
        if migration.version != expected:
            raise MigrationError(
                f"Migration {migration.name!r} has version {migration.version}, expected {expected}"
            )


def latest_version(migrations: Sequence[Migration] = MIGRATIONS) -> int:
    return migrations[-1].version if migrations else 0


async def _applied_versions(conn: AsyncConnection) -> Dict[int, Dict[str, Any]]:
    await conn.execute(text(_CREATE_SCHEMA_MIGRATIONS))
    result = await conn.execute(
        text("SELECT version, name, applied_at FROM schema_migrations ORDER BY version")
    )
    return {
        row.version: {'version': row.version, 'name': row.name, 'applied_at': row.applied_at}
        for row in result
    }


async def current_version(engine: AsyncEngine) -> int:
    """Highest migration version recorded in the database (0 for a new database)."""
    async with engine.begin() as conn:
        applied = await _applied_versions(conn)
    return max(applied, default=0)


async def apply_migrations(engine: AsyncEngine,
                           migrations: Sequence[Migration] = MIGRATIONS,
                           target: Optional[int] = None) -> int:
    """Apply every pending migration up to ``target`` (default: the latest).

    Returns the schema version after migrating.
    """
    validate_migrations(migrations)
    newest = latest_version(migrations)
    target = newest if target is None else target
    if target > newest:
        raise MigrationError(f"Unknown target version {target} (latest is {newest})")

    async with engine.begin() as conn:
        applied = await _applied_versions(conn)

    version = max(applied, default=0)
    if version > newest:
        raise MigrationError(
            f"Database schema version {version} is newer than this build supports ({newest})"
        )

    for migration in migrations:
        if migration.version in applied or migration.version > target:
            continue

        logger.info(f"Applying migration {migration.version}: {migration.name}")
        async with engine.begin() as conn:
            for statement in migration.statements:
                await conn.execute(text(statement))
            await conn.execute(
                text(
                    "INSERT INTO schema_migrations (version, name, applied_at) "
                    "VALUES (:version, :name, :applied_at)"
                ),
                {'version': migration.version, 'name': migration.name, 'applied_at': utcnow().isoformat(sep=' ')}
            )
        version = migration.version

    return version


async def migration_status(engine: AsyncEngine,
                           migrations: Sequence[Migration] = MIGRATIONS) -> Dict[str, Any]:
    """Describe applied and pending migrations."""
    async with engine.begin() as conn:
        applied = await _applied_versions(conn)

    pending: List[Dict[str, Any]] = [
        {'version': m.version, 'name': m.name}
        for m in migrations
        if m.version not in applied
    ]
    return {
        'current_version': max(applied, default=0),
        'latest_version': latest_version(migrations),
        'applied': list(applied.values()),
        'pending': pending,
    }
