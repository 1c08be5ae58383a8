"""
Shared fixtures: isolated settings, a migrated ledger database and post builders.
"""

from pathlib import Path
from typing import List, Optional

import pytest
import pytest_asyncio

from mastotg.clients import FeedPost, MediaAttachment, MediaKind
from mastotg.config import Settings
from mastotg.core import DeduplicationService
from mastotg.database import DatabaseManager, close_database, init_database

FIXTURES = Path(__file__).parent / "fixtures"
SAMPLE_FEED = FIXTURES / "mastodon.rss"


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings that ignore the developer's .env file."""
    return Settings(
        _env_file=None,
        bot_token="123456:TEST-TOKEN",
        telegram_channels="first_channel,-1001234567890",
        feed_url=str(SAMPLE_FEED),
        database_path=tmp_path / "ledger.db",
        skip_backlog=False,
        log_json=False,
    )


@pytest_asyncio.fixture
async def db(settings):
    manager = DatabaseManager(settings.database_url)
    await init_database(manager)
    yield manager
    await close_database(manager)


@pytest.fixture
def ledger(db) -> DeduplicationService:
    return DeduplicationService(db)


@pytest.fixture
def sample_feed_bytes() -> bytes:
    return SAMPLE_FEED.read_bytes()


def image(name: str) -> MediaAttachment:
    return MediaAttachment(url=f"https://files.example.social/{name}.jpg", kind=MediaKind.IMAGE,
                           mime_type="image/jpeg")


def video(name: str) -> MediaAttachment:
    return MediaAttachment(url=f"https://files.example.social/{name}.mp4", kind=MediaKind.VIDEO,
                           mime_type="video/mp4")


def audio(name: str) -> MediaAttachment:
    return MediaAttachment(url=f"https://files.example.social/{name}.mp3", kind=MediaKind.AUDIO,
                           mime_type="audio/mpeg")


def make_post(post_id: str, body_html: str = "<p>Hello</p>",
              attachments: Optional[List[MediaAttachment]] = None,
              link: Optional[str] = None) -> FeedPost:
    return FeedPost(
        post_id=post_id,
        body_html=body_html,
        link=link or post_id,
        attachments=attachments or [],
    )
