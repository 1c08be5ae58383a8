"""
Message processor turning feed posts into Telegram messages.
Cleans Mastodon's HTML into the subset Telegram accepts and picks the message
types needed for the post's media attachments.
"""
import html
import re
import logging
from typing import List, Optional

from bs4 import BeautifulSoup, Comment, NavigableString, Tag

from mastotg.clients.bot_client import MessageKind, OutgoingMessage
from mastotg.clients.feed_client import FeedPost, MediaAttachment, MediaKind
from mastotg.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

# Bot API limits
TEXT_LIMIT = 4096
CAPTION_LIMIT = 1024
MEDIA_GROUP_LIMIT = 10


_SINGLE_MEDIA_KINDS = {
    MediaKind.IMAGE: MessageKind.PHOTO,
    MediaKind.VIDEO: MessageKind.VIDEO,
    MediaKind.AUDIO: MessageKind.AUDIO,
}


def _classes(tag: Tag) -> List[str]:
    value = tag.get('class') or []
    return value.split() if isinstance(value, str) else list(value)


def _render(node, plain: bool = False) -> str:
    if isinstance(node, Comment):
        return ''
    if isinstance(node, NavigableString):
        return html.escape(str(node), quote=False)
    if not isinstance(node, Tag):
        return ''

    name = node.name
    classes = _classes(node)

    if name == 'br':
        return '\n'
    if name == 'span' and 'invisible' in classes:
        return ''
    if name == 'a' and not plain:
        href = node.get('href')
        if 'hashtag' in classes or not href:
            return _render_children(node, plain=True)
        quoted_href = html.escape(href, quote=True)
        if 'mention' in classes:
            return f'<a href="{quoted_href}">{_render_children(node, plain=True)}</a>'
        # Mastodon shortens the visible text of long links; show the full URL
        return f'<a href="{quoted_href}">{html.escape(href, quote=False)}</a>'

    rendered = _render_children(node, plain=plain)
    if name == 'p':
        return rendered + '\n\n'
    return rendered


def _render_children(node: Tag, plain: bool = False) -> str:
    return ''.join(_render(child, plain=plain) for child in node.children)


def clean_body(body_html: str) -> str:
    """Convert a Mastodon post's HTML into Telegram-flavoured HTML.

    Paragraphs are separated by blank lines, ``<br>`` becomes a newline,
    hashtags become plain text and links keep only their ``href``.
    """
    if not body_html:
        return ''
    soup = BeautifulSoup(body_html, 'html.parser')
    text = _render_children(soup)
    lines = [line.rstrip() for line in text.strip().split('\n')]
    return '\n'.join(lines)


# Links and entities must not be split across messages
_ATOMIC_RE = re.compile(r'<a\s[^>]*>.*?</a>|&#?\w+;')


def _safe_cut(line: str, limit: int) -> int:
    """Index at which to cut ``line`` without splitting a word, a link or an entity."""
    spans = [m.span() for m in _ATOMIC_RE.finditer(line)]

    def inside(pos: int) -> bool:
        return any(start < pos < end for start, end in spans)

    cut = line.rfind(' ', 0, limit)
    while cut > 0 and inside(cut):
        cut = line.rfind(' ', 0, cut)
    if cut > 0:
        return cut

    # No usable space: cut hard, but before a link or entity the limit falls into
    for start, end in spans:
        if start < limit < end and start > 0:
            return start
    return limit


def split_text(text: str, limit: int = TEXT_LIMIT) -> List[str]:
    """Split text into chunks of at most ``limit`` characters on line boundaries."""
    if len(text) <= limit:
        return [text]

    chunks: List[str] = []
    current = ''
    for line in text.split('\n'):
        while len(line) > limit:
            cut = _safe_cut(line, limit)
            if current:
                chunks.append(current)
                current = ''
            chunks.append(line[:cut].rstrip())
            line = line[cut:].lstrip()
        candidate = f"{current}\n{line}" if current else line
        if len(candidate) > limit:
            chunks.append(current)
            current = line
        else:
            current = candidate
    if current:
        chunks.append(current)
    return [chunk for chunk in chunks if chunk.strip()]


class MessageProcessor:
    """Maps feed posts to the Telegram messages that represent them."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or default_settings

    def render_body(self, post: FeedPost) -> str:
        body = clean_body(post.body_html)
        if self.settings.append_link and post.link:
            link = f'<a href="{html.escape(post.link, quote=True)}">{html.escape(post.link, quote=False)}</a>'
            body = f"{body}\n\n{link}" if body else link
        return body

    def build_messages(self, post: FeedPost) -> List[OutgoingMessage]:
        """Build the ordered messages for a post.

        The body goes into the caption of the first media message when it
        fits, otherwise it follows the media as separate text messages.
        """
        body = self.render_body(post)
        attachments = post.attachments

        if not attachments:
            if not body:
                logger.warning(f"Post {post.post_id} has neither text nor media")
                return []
            return [OutgoingMessage(MessageKind.TEXT, text=chunk) for chunk in split_text(body)]

        caption = body if body and len(body) <= CAPTION_LIMIT else None
        media_messages = self._media_messages(attachments)
        if caption:
            media_messages[0].text = caption

        messages = media_messages
        if body and caption is None:
            messages.extend(
                OutgoingMessage(MessageKind.TEXT, text=chunk) for chunk in split_text(body)
            )
        return messages

    def _media_messages(self, attachments: List[MediaAttachment]) -> List[OutgoingMessage]:
        if len(attachments) == 1:
            return [self._single(attachments[0])]

        kinds = {a.kind for a in attachments}
        visual_only = kinds <= {MediaKind.IMAGE, MediaKind.VIDEO}
        audio_only = kinds == {MediaKind.AUDIO}

        if not (visual_only or audio_only):
            # Telegram cannot group audio with photos or videos
            return [self._single(a) for a in attachments]

        messages = []
        for start in range(0, len(attachments), MEDIA_GROUP_LIMIT):
            group = attachments[start:start + MEDIA_GROUP_LIMIT]
            if len(group) == 1:
                messages.append(self._single(group[0]))
            else:
                messages.append(OutgoingMessage(MessageKind.MEDIA_GROUP, media=list(group)))
        return messages

    @staticmethod
    def _single(attachment: MediaAttachment) -> OutgoingMessage:
        return OutgoingMessage(_SINGLE_MEDIA_KINDS[attachment.kind], media=[attachment])
