"""
Bot API client manager using python-telegram-bot.
Sends prepared messages to channels; a console sender prints them instead.
"""
import enum
import json
import logging
import sys
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, TextIO

from telegram import Bot, InputMediaAudio, InputMediaPhoto, InputMediaVideo
from telegram.constants import ParseMode

from mastotg.clients.feed_client import MediaAttachment, MediaKind
from mastotg.config import settings

logger = logging.getLogger(__name__)


class MessageKind(enum.Enum):
    """Telegram message type."""
    TEXT = "text"
    PHOTO = "photo"
    VIDEO = "video"
    AUDIO = "audio"
    MEDIA_GROUP = "media_group"


@dataclass
class OutgoingMessage:
    """One Bot API call: a text, a single media with caption, or a media group."""
    kind: MessageKind
    text: Optional[str] = None
    media: List[MediaAttachment] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind.value,
            'text': self.text,
            'media': [{'url': m.url, 'kind': m.kind.value} for m in self.media],
        }


_INPUT_MEDIA = {
    MediaKind.IMAGE: InputMediaPhoto,
    MediaKind.VIDEO: InputMediaVideo,
    MediaKind.AUDIO: InputMediaAudio,
}


class BotClientManager:
    """Manages the Telegram Bot API client."""

    def __init__(self, token: Optional[str] = None, bot: Optional[Bot] = None):
        self.token = token or settings.bot_token
        self.bot: Optional[Bot] = bot
        self._is_running = False

    async def start(self) -> None:
        """Create and initialize the bot."""
        if self._is_running:
            return
        if self.bot is None:
            if not self.token:
                raise RuntimeError("Bot token is not configured")
            self.bot = Bot(self.token)

        logger.info("Starting Bot API client...")
        await self.bot.initialize()
        self._is_running = True
        logger.info("Bot API client started successfully")

    async def stop(self) -> None:
        """Shut the bot down."""
        if self.bot and self._is_running:
            logger.info("Stopping Bot API client...")
            await self.bot.shutdown()
            self._is_running = False
            logger.info("Bot API client stopped")

    async def send(self, chat_id: str, message: OutgoingMessage) -> List[int]:
        """Send one prepared message; returns the Telegram message ids.

        Telegram errors propagate to the caller, which owns the retry policy.
        """
        if not self.bot:
            raise RuntimeError("Bot not initialized")

        caption_kwargs = {'caption': message.text, 'parse_mode': ParseMode.HTML} if message.text else {}

        if message.kind == MessageKind.TEXT:
            sent = await self.bot.send_message(
                chat_id=chat_id, text=message.text, parse_mode=ParseMode.HTML
            )
            return [sent.message_id]

        if message.kind == MessageKind.MEDIA_GROUP:
            media = [
                self._input_media(attachment, message.text if i == 0 else None)
                for i, attachment in enumerate(message.media)
            ]
            sent_group = await self.bot.send_media_group(chat_id=chat_id, media=media)
            return [m.message_id for m in sent_group]

        url = message.media[0].url
        if message.kind == MessageKind.PHOTO:
            sent = await self.bot.send_photo(chat_id=chat_id, photo=url, **caption_kwargs)
        elif message.kind == MessageKind.VIDEO:
            sent = await self.bot.send_video(chat_id=chat_id, video=url, **caption_kwargs)
        elif message.kind == MessageKind.AUDIO:
            sent = await self.bot.send_audio(chat_id=chat_id, audio=url, **caption_kwargs)
        else:
            raise ValueError(f"Unsupported message kind: {message.kind}")
        return [sent.message_id]

    @staticmethod
    def _input_media(attachment: MediaAttachment, caption: Optional[str]):
        input_cls = _INPUT_MEDIA[attachment.kind]
        if caption:
            return input_cls(media=attachment.url, caption=caption, parse_mode=ParseMode.HTML)
        return input_cls(media=attachment.url)

    @property
    def is_running(self) -> bool:
        """Check if bot is currently running."""
        return self._is_running


class ConsoleSender:
    """Prints messages as JSON lines instead of sending them."""

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream or sys.stdout
        self._counter = 0

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass

    async def send(self, chat_id: str, message: OutgoingMessage) -> List[int]:
        record = {'chat_id': chat_id, **message.to_dict()}
        self.stream.write(json.dumps(record, ensure_ascii=False) + "\n")
        self.stream.flush()
        count = len(message.media) if message.kind == MessageKind.MEDIA_GROUP else 1
        ids = list(range(self._counter + 1, self._counter + count + 1))
        self._counter += count
        return ids
