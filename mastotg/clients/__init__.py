"""Clients for the Mastodon feed and the Telegram Bot API."""

from .feed_client import FeedClient, FeedError, Feed, FeedPost, MediaAttachment, MediaKind, resolve_feed_url
from .bot_client import BotClientManager, ConsoleSender, MessageKind, OutgoingMessage

__all__ = [
    "FeedClient",
    "FeedError",
    "Feed",
    "FeedPost",
    "MediaAttachment",
    "MediaKind",
    "resolve_feed_url",
    "BotClientManager",
    "ConsoleSender",
    "MessageKind",
    "OutgoingMessage"
]
