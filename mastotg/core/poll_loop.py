"""
Poll loop: feed -> ledger check -> forwarding -> ledger record, on a fixed interval.
"""
import asyncio
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

import structlog

from mastotg.clients.feed_client import FeedClient, FeedPost
from mastotg.config import Settings, settings as default_settings
from mastotg.core.deduplication import DeduplicationService
from mastotg.core.forwarding_engine import ForwardingEngine

logger = structlog.get_logger(__name__)


@dataclass
class RoundResult:
    """Counters of a single poll round."""
    fetched: int = 0
    forwarded: int = 0
    skipped: int = 0
    failed: int = 0
    backlog_marked: int = 0

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


class PollLoop:
    """Periodically forwards new feed posts."""

    def __init__(self, feed_client: FeedClient,
                 deduplication_service: DeduplicationService,
                 forwarding_engine: ForwardingEngine,
                 settings: Optional[Settings] = None,
                 dry_run: bool = False):
        self.feed_client = feed_client
        self.deduplication_service = deduplication_service
        self.forwarding_engine = forwarding_engine
        self.settings = settings or default_settings
        self.dry_run = dry_run
        self._stop_event = asyncio.Event()
        self._rounds = 0

    @property
    def interval(self) -> int:
        return self.settings.poll_interval_seconds

    async def _pending_posts(self, posts: List[FeedPost]) -> List[FeedPost]:
        new_ids = set(await self.deduplication_service.filter_new(p.post_id for p in posts))
        pending = []
        for post in posts:
            if post.post_id in new_ids:
                pending.append(post)
                # Forward a post listed twice only once
                new_ids.discard(post.post_id)
        return pending

    async def poll_once(self) -> RoundResult:
        """Run one round. Feed errors propagate to the caller."""
        feed = await self.feed_client.fetch()
        posts = feed.posts
        result = RoundResult(fetched=len(posts))

        if not self.dry_run and not await self.deduplication_service.is_initialized():
            if self.settings.skip_backlog:
                result.backlog_marked = await self.deduplication_service.mark_many(p.post_id for p in posts)
                await self.deduplication_service.mark_initialized()
                logger.info("First run: existing posts marked as forwarded without sending",
                            count=result.backlog_marked)
                return result
            await self.deduplication_service.mark_initialized()

        if not posts:
            return result

        pending = await self._pending_posts(posts)
        result.skipped = len(posts) - len(pending)

        limit = self.settings.max_posts_per_round
        if limit is not None and len(pending) > limit:
            logger.info("Capping posts forwarded this round", pending=len(pending), limit=limit)
            pending = pending[:limit]

        for post in pending:
            forward_result = await self.forwarding_engine.forward_post(post)
            if not forward_result.success:
                result.failed += 1
                # Later posts wait so channels keep the feed's order
                logger.error("Stopping round at failed post",
                             post_id=post.post_id, failed=forward_result.failed)
                break

            if not self.dry_run:
                await self.deduplication_service.mark_forwarded(post.post_id)
            result.forwarded += 1

        return result

    async def run_forever(self) -> None:
        """Poll until ``stop()`` is called. Errors in a round are logged and the loop goes on."""
        self._stop_event.clear()
        logger.info("Poll loop started", interval=self.interval, feed_url=self.feed_client.feed_url)

        while not self._stop_event.is_set():
            self._rounds += 1
            try:
                result = await self.poll_once()
                logger.info("Poll round finished", round=self._rounds, **result.as_dict())
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Poll round failed", round=self._rounds, error=str(e), exc_info=True)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

        logger.info("Poll loop stopped", rounds=self._rounds)

    def stop(self) -> None:
        self._stop_event.set()

    @property
    def rounds(self) -> int:
        return self._rounds
