"""
Schema migration management commands.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from mastotg.database import (
    DatabaseManager, apply_migrations, close_database, migration_status
)

logger = logging.getLogger(__name__)


class MigrationCommands:
    """Management commands for the ledger schema."""

    def __init__(self, db: Optional[DatabaseManager] = None):
        self.db = db or DatabaseManager()

    async def run_migrations(self, target: Optional[int] = None) -> Dict[str, Any]:
        """Apply pending migrations."""
        logger.info("Applying schema migrations...")

        try:
            before = await migration_status(self.db.engine)
            version = await apply_migrations(self.db.engine, target=target)
            return {
                'success': True,
                'previous_version': before['current_version'],
                'current_version': version,
                'applied': [
                    m for m in before['pending']
                    if m['version'] <= version
                ]
            }

        except Exception as e:
            logger.error(f"Migration failed: {e}", exc_info=True)
            return {
                'success': False,
                'error': str(e),
                'timestamp': datetime.now(timezone.utc).isoformat()
            }
        finally:
            await close_database(self.db)

    async def get_migration_status(self) -> Dict[str, Any]:
        """Get current schema version and pending migrations."""
        try:
            status = await migration_status(self.db.engine)
            status['success'] = True
            return status

        except Exception as e:
            logger.error(f"Failed to get migration status: {e}")
            return {
                'success': False,
                'error': str(e),
                'timestamp': datetime.now(timezone.utc).isoformat()
            }
        finally:
            await close_database(self.db)
