"""
Administrative commands for the ledger and the source feed.
"""
import logging
from datetime import timedelta
from typing import Any, Dict, Optional

from mastotg.clients import FeedClient, FeedError
from mastotg.config import ConfigurationError, Settings, settings as default_settings
from mastotg.core import DeduplicationService, MessageProcessor
from mastotg.database import DatabaseManager, close_database, init_database, utcnow

logger = logging.getLogger(__name__)


class AdminCommands:
    """Administrative commands for ledger maintenance."""

    def __init__(self, db: Optional[DatabaseManager] = None, settings: Optional[Settings] = None):
        self.settings = settings or default_settings
        self.db = db or DatabaseManager(self.settings.database_url)
        self.ledger = DeduplicationService(self.db)

    async def get_ledger_stats(self) -> Dict[str, Any]:
        """Get ledger statistics."""
        try:
            await init_database(self.db)
            stats = await self.ledger.get_statistics()
            return {'success': True, 'stats': stats}

        except Exception as e:
            logger.error(f"Failed to get ledger statistics: {e}", exc_info=True)
            return {'success': False, 'error': str(e)}
        finally:
            await close_database(self.db)

    async def prune_ledger(self, days_old: int = 90) -> Dict[str, Any]:
        """Delete ledger entries older than ``days_old`` days."""
        if days_old < 1:
            return {'success': False, 'error': f'--days must be at least 1, got {days_old}'}
        try:
            await init_database(self.db)
            cutoff = utcnow() - timedelta(days=days_old)
            deleted = await self.ledger.prune(cutoff)
            return {
                'success': True,
                'message': f'Pruned {deleted} entries older than {days_old} days',
                'deleted': deleted
            }

        except Exception as e:
            logger.error(f"Failed to prune ledger: {e}", exc_info=True)
            return {'success': False, 'error': str(e)}
        finally:
            await close_database(self.db)

    async def forget_post(self, post_id: str) -> Dict[str, Any]:
        """Remove a post from the ledger so the next round forwards it again."""
        try:
            await init_database(self.db)
            if await self.ledger.forget(post_id):
                return {'success': True, 'message': f'Post {post_id} removed from the ledger'}
            return {'success': False, 'message': f'Post {post_id} is not in the ledger'}

        except Exception as e:
            logger.error(f"Failed to forget post: {e}", exc_info=True)
            return {'success': False, 'error': str(e)}
        finally:
            await close_database(self.db)

    async def mark_post(self, post_id: str) -> Dict[str, Any]:
        """Record a post as forwarded without sending it."""
        try:
            await init_database(self.db)
            if await self.ledger.mark_forwarded(post_id):
                return {'success': True, 'message': f'Post {post_id} marked as forwarded'}
            return {'success': False, 'message': f'Post {post_id} is already in the ledger'}

        except Exception as e:
            logger.error(f"Failed to mark post: {e}", exc_info=True)
            return {'success': False, 'error': str(e)}
        finally:
            await close_database(self.db)

    async def preview_feed(self, limit: Optional[int] = None) -> Dict[str, Any]:
        """Fetch the feed and show the posts with the messages they map to."""
        if limit is not None and limit < 1:
            return {'success': False, 'error': f'--limit must be at least 1, got {limit}'}
        feed_client = None
        try:
            feed_client = FeedClient.from_settings(self.settings)
            feed = await feed_client.fetch()
            processor = MessageProcessor(self.settings)
            posts = feed.posts[-limit:] if limit is not None else feed.posts
            return {
                'success': True,
                'feed_url': feed_client.feed_url,
                'title': feed.title,
                'posts': [
                    {
                        **post.to_dict(),
                        'messages': [m.to_dict() for m in processor.build_messages(post)]
                    }
                    for post in posts
                ]
            }

        except (ConfigurationError, FeedError) as e:
            return {'success': False, 'error': str(e)}
        finally:
            if feed_client:
                await feed_client.close()
