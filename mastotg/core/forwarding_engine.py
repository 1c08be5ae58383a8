"""
Forwarding engine sending feed posts to every configured Telegram channel.
Handles flood control and transient network errors with bounded retries.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, List, Optional, Protocol, Sequence

from telegram.error import BadRequest, NetworkError, RetryAfter, TelegramError, TimedOut

from mastotg.clients.bot_client import OutgoingMessage
from mastotg.clients.feed_client import FeedPost
from mastotg.config import Settings, settings as default_settings
from mastotg.core.deduplication import DeduplicationService
from mastotg.core.message_processor import MessageProcessor

logger = logging.getLogger(__name__)


class MessageSender(Protocol):
    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    async def send(self, chat_id: str, message: OutgoingMessage) -> List[int]: ...


@dataclass
class ForwardResult:
    """Outcome of forwarding one post."""
    post_id: str
    delivered: Dict[str, Optional[int]] = field(default_factory=dict)
    skipped: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not self.failed


def _retry_after_seconds(error: RetryAfter) -> float:
    retry_after = error.retry_after
    if isinstance(retry_after, timedelta):
        return retry_after.total_seconds()
    return float(retry_after)


class ForwardingEngine:
    """Sends posts to channels and records each delivery in the ledger."""

    def __init__(self, sender: MessageSender,
                 deduplication_service: DeduplicationService,
                 channels: Sequence[str],
                 settings: Optional[Settings] = None,
                 message_processor: Optional[MessageProcessor] = None,
                 record_deliveries: bool = True):
        self.sender = sender
        self.deduplication_service = deduplication_service
        self.channels = list(channels)
        self.settings = settings or default_settings
        self.message_processor = message_processor or MessageProcessor(self.settings)
        self.record_deliveries = record_deliveries

    async def forward_post(self, post: FeedPost) -> ForwardResult:
        """Forward a post to every channel that has not received it yet."""
        result = ForwardResult(post_id=post.post_id)
        messages = self.message_processor.build_messages(post)
        if not messages:
            logger.warning(f"Nothing to send for post {post.post_id}")
            return result

        already_delivered = set()
        if self.record_deliveries:
            already_delivered = await self.deduplication_service.delivered_chats(post.post_id)

        for chat_id in self.channels:
            if chat_id in already_delivered:
                result.skipped.append(chat_id)
                logger.debug(f"Post {post.post_id} already delivered to {chat_id}")
                continue

            try:
                message_ids = await self._send_all(chat_id, messages)
            except TelegramError as e:
                logger.error(f"Failed to forward post {post.post_id} to {chat_id}: {e}")
                result.failed[chat_id] = str(e)
                continue

            first_id = message_ids[0] if message_ids else None
            if self.record_deliveries:
                await self.deduplication_service.record_delivery(post.post_id, chat_id, first_id)
            result.delivered[chat_id] = first_id
            logger.info(f"Forwarded post {post.post_id} to {chat_id} (message {first_id})")

        return result

    async def _send_all(self, chat_id: str, messages: List[OutgoingMessage]) -> List[int]:
        message_ids: List[int] = []
        for message in messages:
            message_ids.extend(await self._send_with_retry(chat_id, message))
        return message_ids

    async def _send_with_retry(self, chat_id: str, message: OutgoingMessage) -> List[int]:
        """Send one message, waiting out flood control and transient errors."""
        max_attempts = self.settings.max_retry_attempts
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self.sender.send(chat_id, message)
            except RetryAfter as e:
                if attempt >= max_attempts:
                    raise
                delay = _retry_after_seconds(e) * self.settings.flood_wait_multiplier
                logger.warning(f"Flood control on {chat_id}: retrying in {delay:.1f} seconds")
            except BadRequest:
                raise
            except (TimedOut, NetworkError) as e:
                if attempt >= max_attempts:
                    raise
                delay = 2.0 * attempt
                logger.warning(f"Network error sending to {chat_id} ({e}), retry {attempt} in {delay:.0f} seconds")
            await asyncio.sleep(delay)
