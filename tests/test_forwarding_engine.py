"""
Unit tests for the forwarding engine: per-channel delivery, retries and the
delivery ledger.
"""

import warnings
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest
from telegram.error import BadRequest, NetworkError, RetryAfter, TimedOut

from mastotg.clients import MessageKind
from mastotg.core import ForwardingEngine
from mastotg.core.forwarding_engine import _retry_after_seconds

from conftest import image, make_post

CHANNELS = ["@first_channel", "-1001234567890"]


@pytest.fixture
def sender():
    mock = AsyncMock()
    mock.send = AsyncMock(return_value=[42])
    return mock


@pytest.fixture
def engine(sender, ledger, settings):
    return ForwardingEngine(sender, ledger, CHANNELS, settings=settings)


@pytest.fixture
def no_sleep():
    with patch("mastotg.core.forwarding_engine.asyncio.sleep", new_callable=AsyncMock) as sleep:
        yield sleep


# ---------------------------------------------------------------------------
# Delivery
# ---------------------------------------------------------------------------


class TestForwardPost:
    @pytest.mark.asyncio
    async def test_delivers_to_every_channel(self, engine, sender, ledger):
        result = await engine.forward_post(make_post("p1", "<p>Hi</p>"))

        assert result.success
        assert result.delivered == {"@first_channel": 42, "-1001234567890": 42}
        assert [c.args[0] for c in sender.send.await_args_list] == CHANNELS
        assert await ledger.delivered_chats("p1") == set(CHANNELS)

    @pytest.mark.asyncio
    async def test_message_content(self, engine, sender):
        await engine.forward_post(make_post("p1", "<p>Look</p>", [image("a")]))

        message = sender.send.await_args_list[0].args[1]
        assert message.kind == MessageKind.PHOTO
        assert message.text == "Look"

    @pytest.mark.asyncio
    async def test_already_delivered_channels_skipped(self, engine, sender, ledger):
        await ledger.record_delivery("p1", "@first_channel", 7)

        result = await engine.forward_post(make_post("p1"))

        assert result.skipped == ["@first_channel"]
        assert list(result.delivered) == ["-1001234567890"]
        assert sender.send.await_count == 1

    @pytest.mark.asyncio
    async def test_all_messages_sent_in_order(self, engine, sender):
        body = "<p>" + "y" * 2000 + "</p>"
        sender.send.side_effect = [[1], [2], [3], [4]]

        result = await engine.forward_post(make_post("p1", body, [image("a")]))

        kinds = [c.args[1].kind for c in sender.send.await_args_list]
        assert kinds == [MessageKind.PHOTO, MessageKind.TEXT] * 2
        assert result.delivered == {"@first_channel": 1, "-1001234567890": 3}

    @pytest.mark.asyncio
    async def test_failed_channel_does_not_block_others(self, engine, sender, ledger):
        async def send(chat_id, message):
            if chat_id == "@first_channel":
                raise BadRequest("Chat not found")
            return [9]

        sender.send.side_effect = send
        result = await engine.forward_post(make_post("p1"))

        assert not result.success
        assert "Chat not found" in result.failed["@first_channel"]
        assert result.delivered == {"-1001234567890": 9}
        assert await ledger.delivered_chats("p1") == {"-1001234567890"}

    @pytest.mark.asyncio
    async def test_retry_resends_only_to_failed_channel(self, engine, sender):
        sender.send.side_effect = [BadRequest("Chat not found"), [1]]
        first = await engine.forward_post(make_post("p1"))
        assert not first.success

        sender.send.side_effect = None
        second = await engine.forward_post(make_post("p1"))

        assert second.success
        assert second.skipped == ["-1001234567890"]
        assert list(second.delivered) == ["@first_channel"]

    @pytest.mark.asyncio
    async def test_nothing_to_send(self, engine, sender):
        result = await engine.forward_post(make_post("p1", ""))
        assert result.success
        assert result.delivered == {}
        sender.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_dry_run_records_nothing(self, sender, ledger, settings):
        engine = ForwardingEngine(sender, ledger, CHANNELS, settings=settings, record_deliveries=False)
        await engine.forward_post(make_post("p1"))
        await engine.forward_post(make_post("p1"))

        assert sender.send.await_count == 4
        assert await ledger.delivered_chats("p1") == set()


# ---------------------------------------------------------------------------
# Retries
# ---------------------------------------------------------------------------


class TestRetries:
    @pytest.mark.asyncio
    async def test_flood_wait(self, engine, sender, no_sleep):
        sender.send.side_effect = [RetryAfter(5), [1], [2]]

        result = await engine.forward_post(make_post("p1"))

        assert result.success
        no_sleep.assert_awaited_once_with(7.5)

    @pytest.mark.asyncio
    async def test_network_error_retried(self, engine, sender, no_sleep):
        sender.send.side_effect = [TimedOut(), NetworkError("reset"), [1], [2]]

        result = await engine.forward_post(make_post("p1"))

        assert result.success
        assert [c.args[0] for c in no_sleep.await_args_list] == [2.0, 4.0]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, engine, sender, settings, no_sleep):
        sender.send.side_effect = NetworkError("down")

        result = await engine.forward_post(make_post("p1"))

        assert set(result.failed) == set(CHANNELS)
        assert sender.send.await_count == settings.max_retry_attempts * len(CHANNELS)

    @pytest.mark.asyncio
    async def test_bad_request_not_retried(self, engine, sender, no_sleep):
        sender.send.side_effect = BadRequest("Wrong file identifier")

        result = await engine.forward_post(make_post("p1"))

        assert set(result.failed) == set(CHANNELS)
        assert sender.send.await_count == len(CHANNELS)
        no_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_flood_wait_as_timedelta(self, engine, sender, no_sleep):
        sender.send.side_effect = [RetryAfter(timedelta(seconds=4)), [1], [2]]

        result = await engine.forward_post(make_post("p1"))

        assert result.success
        no_sleep.assert_awaited_once_with(6.0)

    def test_retry_after_read_without_warnings(self):
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            assert _retry_after_seconds(RetryAfter(5)) == 5.0
            assert _retry_after_seconds(RetryAfter(timedelta(seconds=3))) == 3.0
