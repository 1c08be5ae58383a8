"""
Unit tests for the Bot API sender and the console sender.
"""

import io
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from telegram import InputMediaPhoto, InputMediaVideo
from telegram.constants import ParseMode
from telegram.error import BadRequest

from mastotg.clients import BotClientManager, ConsoleSender, MessageKind, OutgoingMessage

from conftest import audio, image, video


@pytest.fixture
def bot():
    mock = MagicMock()
    mock.initialize = AsyncMock()
    mock.shutdown = AsyncMock()
    mock.send_message = AsyncMock(return_value=MagicMock(message_id=10))
    mock.send_photo = AsyncMock(return_value=MagicMock(message_id=11))
    mock.send_video = AsyncMock(return_value=MagicMock(message_id=12))
    mock.send_audio = AsyncMock(return_value=MagicMock(message_id=13))
    mock.send_media_group = AsyncMock(
        return_value=[MagicMock(message_id=20), MagicMock(message_id=21)]
    )
    return mock


@pytest_asyncio.fixture
async def client(bot):
    manager = BotClientManager(token="123:abc", bot=bot)
    await manager.start()
    return manager


class TestBotClientManager:
    @pytest.mark.asyncio
    async def test_start_and_stop(self, bot):
        manager = BotClientManager(token="123:abc", bot=bot)
        await manager.start()
        assert manager.is_running
        bot.initialize.assert_awaited_once()

        await manager.stop()
        assert not manager.is_running
        bot.shutdown.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_send_before_start(self):
        manager = BotClientManager(token="123:abc")
        with pytest.raises(RuntimeError):
            await manager.send("@news", OutgoingMessage(MessageKind.TEXT, text="hi"))

    @pytest.mark.asyncio
    async def test_text(self, client, bot):
        ids = await client.send("@news", OutgoingMessage(MessageKind.TEXT, text="<b>hi</b>"))

        assert ids == [10]
        bot.send_message.assert_awaited_once_with(chat_id="@news", text="<b>hi</b>", parse_mode=ParseMode.HTML)

    @pytest.mark.asyncio
    async def test_photo_with_caption(self, client, bot):
        ids = await client.send("@news", OutgoingMessage(MessageKind.PHOTO, text="cap", media=[image("a")]))

        assert ids == [11]
        bot.send_photo.assert_awaited_once_with(
            chat_id="@news", photo="https://files.example.social/a.jpg",
            caption="cap", parse_mode=ParseMode.HTML
        )

    @pytest.mark.asyncio
    async def test_video_and_audio_without_caption(self, client, bot):
        await client.send("@news", OutgoingMessage(MessageKind.VIDEO, media=[video("v")]))
        await client.send("@news", OutgoingMessage(MessageKind.AUDIO, media=[audio("s")]))

        bot.send_video.assert_awaited_once_with(chat_id="@news", video="https://files.example.social/v.mp4")
        bot.send_audio.assert_awaited_once_with(chat_id="@news", audio="https://files.example.social/s.mp3")

    @pytest.mark.asyncio
    async def test_media_group_caption_on_first_item(self, client, bot):
        message = OutgoingMessage(MessageKind.MEDIA_GROUP, text="cap", media=[image("a"), video("b")])

        ids = await client.send("@news", message)

        assert ids == [20, 21]
        media = bot.send_media_group.await_args.kwargs["media"]
        assert isinstance(media[0], InputMediaPhoto)
        assert isinstance(media[1], InputMediaVideo)
        assert media[0].caption == "cap"
        assert media[1].caption is None

    @pytest.mark.asyncio
    async def test_errors_propagate(self, client, bot):
        bot.send_message.side_effect = BadRequest("Chat not found")
        with pytest.raises(BadRequest):
            await client.send("@news", OutgoingMessage(MessageKind.TEXT, text="hi"))


class TestConsoleSender:
    @pytest.mark.asyncio
    async def test_prints_json_lines(self):
        stream = io.StringIO()
        sender = ConsoleSender(stream)

        first = await sender.send("@news", OutgoingMessage(MessageKind.TEXT, text="hi"))
        second = await sender.send(
            "@news", OutgoingMessage(MessageKind.MEDIA_GROUP, media=[image("a"), image("b")])
        )

        assert first == [1]
        assert second == [2, 3]
        records = [json.loads(line) for line in stream.getvalue().splitlines()]
        assert records[0] == {"chat_id": "@news", "kind": "text", "text": "hi", "media": []}
        assert records[1]["kind"] == "media_group"
        assert len(records[1]["media"]) == 2
