"""
Deduplication ledger preventing a post from being forwarded twice.
Records forwarded post ids and per-channel deliveries in the SQLite database.
"""
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.sqlite import insert

from mastotg.database import DatabaseManager, Delivery, ForwardedPost, PollState, db_manager, utcnow

logger = logging.getLogger(__name__)

# SQLite limits the number of bound parameters per statement
_CHUNK_SIZE = 500


def _chunks(items: List[str], size: int = _CHUNK_SIZE):
    for start in range(0, len(items), size):
        yield items[start:start + size]


class DeduplicationService:
    """Persistent ledger of forwarded posts."""

    def __init__(self, db: Optional[DatabaseManager] = None):
        self.db = db or db_manager

    async def is_forwarded(self, post_id: str) -> bool:
        """Check whether a post has already been forwarded."""
        async with self.db.get_session() as session:
            result = await session.execute(
                select(ForwardedPost.post_id).where(ForwardedPost.post_id == post_id)
            )
            return result.scalar_one_or_none() is not None

    async def filter_new(self, post_ids: Iterable[str]) -> List[str]:
        """Return the ids that are not in the ledger, keeping their order."""
        post_ids = list(post_ids)
        if not post_ids:
            return []

        known: Set[str] = set()
        async with self.db.get_session() as session:
            for chunk in _chunks(list(dict.fromkeys(post_ids))):
                result = await session.execute(
                    select(ForwardedPost.post_id).where(ForwardedPost.post_id.in_(chunk))
                )
                known.update(result.scalars().all())

        return [post_id for post_id in post_ids if post_id not in known]

    async def mark_forwarded(self, post_id: str, forwarded_at: Optional[datetime] = None) -> bool:
        """Record a post as forwarded.

        Returns ``True`` if the post was newly recorded, ``False`` if it was
        already in the ledger (the original timestamp is kept).
        """
        async with self.db.get_session() as session:
            stmt = insert(ForwardedPost).values(
                post_id=post_id,
                forwarded_at=forwarded_at or utcnow()
            )
            stmt = stmt.on_conflict_do_nothing(index_elements=['post_id'])
            result = await session.execute(stmt)

        inserted = result.rowcount > 0
        if inserted:
            logger.debug(f"Marked post as forwarded: {post_id}")
        return inserted

    async def mark_many(self, post_ids: Iterable[str]) -> int:
        """Record several posts at once. Returns how many were new."""
        post_ids = list(dict.fromkeys(post_ids))
        if not post_ids:
            return 0

        now = utcnow()
        inserted = 0
        async with self.db.get_session() as session:
            for chunk in _chunks(post_ids):
                stmt = insert(ForwardedPost).values(
                    [{'post_id': post_id, 'forwarded_at': now} for post_id in chunk]
                )
                stmt = stmt.on_conflict_do_nothing(index_elements=['post_id'])
                result = await session.execute(stmt)
                inserted += max(result.rowcount, 0)
        return inserted

    async def record_delivery(self, post_id: str, chat_id: str, message_id: Optional[int]) -> None:
        """Record that a post reached a channel."""
        async with self.db.get_session() as session:
            stmt = insert(Delivery).values(
                post_id=post_id,
                chat_id=chat_id,
                message_id=message_id,
                delivered_at=utcnow()
            )
            stmt = stmt.on_conflict_do_nothing(index_elements=['post_id', 'chat_id'])
            await session.execute(stmt)

    async def delivered_chats(self, post_id: str) -> Set[str]:
        """Channels that already received a post."""
        async with self.db.get_session() as session:
            result = await session.execute(
                select(Delivery.chat_id).where(Delivery.post_id == post_id)
            )
            return set(result.scalars().all())

    async def get_deliveries(self, post_id: str) -> Dict[str, Optional[int]]:
        """Map of channel to first Telegram message id for a post."""
        async with self.db.get_session() as session:
            result = await session.execute(
                select(Delivery.chat_id, Delivery.message_id).where(Delivery.post_id == post_id)
            )
            return {chat_id: message_id for chat_id, message_id in result.all()}

    async def is_empty(self) -> bool:
        """True when nothing has ever been recorded."""
        async with self.db.get_session() as session:
            result = await session.execute(select(ForwardedPost.post_id).limit(1))
            return result.first() is None

    async def is_initialized(self) -> bool:
        """True once the poller has completed its first round.

        Independent of the ledger rows: pruning or forgetting posts does not reset it.
        """
        async with self.db.get_session() as session:
            result = await session.execute(select(PollState.pk).where(PollState.pk == 1))
            return result.scalar_one_or_none() is not None

    async def mark_initialized(self) -> bool:
        """Record that the first round has run. Returns False if it already was."""
        async with self.db.get_session() as session:
            stmt = insert(PollState).values(pk=1, initialized_at=utcnow())
            stmt = stmt.on_conflict_do_nothing(index_elements=['pk'])
            result = await session.execute(stmt)
        return result.rowcount > 0

    async def forget(self, post_id: str) -> bool:
        """Remove a post from the ledger so it will be forwarded again."""
        async with self.db.get_session() as session:
            result = await session.execute(
                delete(ForwardedPost).where(ForwardedPost.post_id == post_id)
            )
            await session.execute(delete(Delivery).where(Delivery.post_id == post_id))

        removed = result.rowcount > 0
        if removed:
            logger.info(f"Removed post from ledger: {post_id}")
        return removed

    async def prune(self, older_than: datetime) -> int:
        """Delete ledger entries forwarded before ``older_than``.

        Only prune past the age of the oldest post the feed still lists,
        otherwise pruned posts are forwarded again.
        """
        async with self.db.get_session() as session:
            old_ids = select(ForwardedPost.post_id).where(ForwardedPost.forwarded_at < older_than)
            await session.execute(delete(Delivery).where(Delivery.post_id.in_(old_ids)))
            result = await session.execute(
                delete(ForwardedPost).where(ForwardedPost.forwarded_at < older_than)
            )

        deleted_count = result.rowcount
        if deleted_count > 0:
            logger.info(f"Pruned {deleted_count} ledger entries older than {older_than.isoformat()}")
        return deleted_count

    async def get_statistics(self) -> Dict[str, Any]:
        """Get ledger statistics."""
        async with self.db.get_session() as session:
            total_result = await session.execute(select(func.count(ForwardedPost.post_id)))
            range_result = await session.execute(
                select(func.min(ForwardedPost.forwarded_at), func.max(ForwardedPost.forwarded_at))
            )
            oldest, newest = range_result.one()
            per_chat_result = await session.execute(
                select(Delivery.chat_id, func.count(Delivery.post_id)).group_by(Delivery.chat_id)
            )
            initialized_result = await session.execute(select(PollState.initialized_at))

            return {
                'forwarded_posts': total_result.scalar() or 0,
                'oldest_forwarded_at': oldest,
                'newest_forwarded_at': newest,
                'deliveries_by_chat': dict(per_chat_result.all()),
                'initialized_at': initialized_result.scalar_one_or_none(),
            }
