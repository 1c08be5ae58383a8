"""
Mastodon feed client.
Fetches an account's public RSS feed with httpx and parses it with feedparser
into post records in chronological order.
"""
import enum
import logging
import re
from calendar import timegm
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import feedparser
import httpx

from mastotg.config import ConfigurationError, Settings, settings as default_settings

logger = logging.getLogger(__name__)


class FeedError(Exception):
    """Raised when the feed cannot be fetched or parsed."""


class MediaKind(enum.Enum):
    """Attachment media type."""
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"


@dataclass
class MediaAttachment:
    url: str
    kind: MediaKind
    mime_type: Optional[str] = None


@dataclass
class FeedPost:
    """A single post of the source account."""
    post_id: str
    body_html: str
    link: Optional[str] = None
    published: Optional[datetime] = None
    attachments: List[MediaAttachment] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'post_id': self.post_id,
            'link': self.link,
            'published': self.published.isoformat() if self.published else None,
            'body_html': self.body_html,
            'attachments': [
                {'url': a.url, 'kind': a.kind.value, 'mime_type': a.mime_type}
                for a in self.attachments
            ],
            'tags': self.tags,
        }


@dataclass
class Feed:
    title: str
    link: Optional[str]
    updated: Optional[datetime]
    posts: List[FeedPost]


_SCHEME_RE = re.compile(r"^[^:/]+://")


def resolve_feed_url(feed_url: Optional[str] = None,
                     host: Optional[str] = None,
                     account: Optional[str] = None) -> str:
    """Work out the RSS URL of a Mastodon account.

    An explicit ``feed_url`` wins. Otherwise the public feed at
    ``https://<host>/@<user>.rss`` is used; ``account`` may be ``user``,
    ``@user`` or ``user@domain``.
    """
    if feed_url:
        return feed_url

    if not account:
        raise ConfigurationError("Set FEED_URL, or MASTODON_ACCOUNT (with MASTODON_HOST)")

    username, _, domain = account.lstrip('@').partition('@')
    if not username:
        raise ConfigurationError(f"Invalid Mastodon account: {account!r}")

    host = host or domain
    if not host:
        raise ConfigurationError("MASTODON_HOST is required when the account has no domain")
    if not _SCHEME_RE.match(host):
        host = f"https://{host}"

    return f"{host.rstrip('/')}/@{username}.rss"


def _to_datetime(parsed_time) -> Optional[datetime]:
    if not parsed_time:
        return None
    return datetime.fromtimestamp(timegm(parsed_time), tz=timezone.utc)


def _media_kind(medium: Optional[str], mime_type: Optional[str]) -> Optional[MediaKind]:
    candidate = medium or (mime_type or '').split('/', 1)[0]
    # Mastodon publishes GIFs as "gifv", which are MP4 videos
    if candidate == 'gifv':
        candidate = 'video'
    try:
        return MediaKind(candidate)
    except ValueError:
        return None


def _parse_attachments(entry: Dict[str, Any], post_id: str) -> List[MediaAttachment]:
    raw_items = entry.get('media_content') or [
        {'url': link.get('href'), 'type': link.get('type')}
        for link in entry.get('links', [])
        if link.get('rel') == 'enclosure'
    ]

    attachments = []
    for i, item in enumerate(raw_items):
        url = item.get('url')
        if not url:
            logger.warning(f"Media item {i} of post {post_id} has no URL, skipped")
            continue
        kind = _media_kind(item.get('medium'), item.get('type'))
        if kind is None:
            logger.warning(
                f"Unsupported media type in item {i} of post {post_id}: "
                f"{item.get('medium') or item.get('type')}, skipped"
            )
            continue
        attachments.append(MediaAttachment(url=url, kind=kind, mime_type=item.get('type')))
    return attachments


def _parse_entry(entry: Dict[str, Any]) -> FeedPost:
    link = entry.get('link')
    post_id = entry.get('id') or link
    if not post_id:
        raise FeedError("Feed item has neither a GUID nor a link")

    return FeedPost(
        post_id=post_id,
        body_html=entry.get('summary') or entry.get('description') or '',
        link=link,
        published=_to_datetime(entry.get('published_parsed')),
        attachments=_parse_attachments(entry, post_id),
        tags=[tag.get('term') for tag in entry.get('tags', []) if tag.get('term')],
    )


def parse_feed(document: Union[str, bytes]) -> Feed:
    """Parse an RSS document into a feed with posts oldest first."""
    parsed = feedparser.parse(document)

    if parsed.get('bozo') and not parsed.entries:
        raise FeedError(f"Malformed feed: {parsed.get('bozo_exception')}")
    if parsed.get('bozo'):
        logger.warning(f"Feed is not well-formed, using what could be parsed: {parsed.get('bozo_exception')}")

    # Feeds list the newest post first
    posts = [_parse_entry(entry) for entry in reversed(parsed.entries)]

    meta = parsed.feed
    return Feed(
        title=meta.get('title', ''),
        link=meta.get('link'),
        updated=_to_datetime(meta.get('updated_parsed') or meta.get('published_parsed')),
        posts=posts,
    )


class FeedClient:
    """Fetches and parses the source feed."""

    def __init__(self, feed_url: str,
                 settings: Optional[Settings] = None,
                 http_client: Optional[httpx.AsyncClient] = None):
        self.feed_url = feed_url
        self.settings = settings or default_settings
        self._http_client = http_client
        self._owns_client = http_client is None

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "FeedClient":
        url = resolve_feed_url(settings.feed_url, settings.mastodon_host, settings.mastodon_account)
        return cls(url, settings=settings, **kwargs)

    @property
    def http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=self.settings.request_timeout,
                headers={'User-Agent': self.settings.user_agent},
                follow_redirects=True,
            )
        return self._http_client

    @property
    def is_remote(self) -> bool:
        return self.feed_url.startswith(('http://', 'https://'))

    async def fetch_document(self) -> bytes:
        """Download the raw feed document."""
        if not self.is_remote:
            path = Path(self.feed_url.removeprefix('file://'))
            try:
                return path.read_bytes()
            except OSError as e:
                raise FeedError(f"Cannot read feed file {path}: {e}") from e

        try:
            response = await self.http_client.get(self.feed_url)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise FeedError(
                f"Request to {self.feed_url} failed with status code "
                f"{e.response.status_code} and body {e.response.text[:200]!r}"
            ) from e
        except httpx.HTTPError as e:
            raise FeedError(f"Request to {self.feed_url} failed: {e}") from e

        return response.content

    async def fetch(self) -> Feed:
        """Fetch the feed and return its posts oldest first."""
        document = await self.fetch_document()
        feed = parse_feed(document)
        logger.debug(f"Fetched {len(feed.posts)} posts from {self.feed_url}")
        return feed

    async def close(self) -> None:
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None
