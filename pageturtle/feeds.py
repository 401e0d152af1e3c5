"""Feed generation for Pageturtle.

This module renders the post set as an RSS 2.0 document. Feed generation is
kept separate from build orchestration: the orchestrator treats the feed as
one aggregate node and only hands it the ordered, rendered posts.

Classes:
    FeedGenerator: Base class for feed generators.
    RSSGenerator: Generates the RSS 2.0 feed.

Determinism: ``lastBuildDate`` is the newest post date rather than the wall
clock, so unchanged content always produces a byte-identical feed.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
from xml.sax.saxutils import escape, quoteattr

from . import __version__
from .collections import listing_order
from .config import SiteConfig
from .content import Post
from .html_utils import absolutize_html_urls, join_root_url, truncate_html
from .utils import rfc822_date


class FeedGenerator(ABC):
    """Abstract base class for feed generators.

    Subclasses implement specific feed formats.
    """

    @property
    @abstractmethod
    def filename(self) -> str:
        """Return the output path for this feed, relative to the output root."""
        ...

    @abstractmethod
    def generate(self, posts: Iterable[Post], config: SiteConfig) -> str:
        """Generate feed content from rendered posts.

        Args:
            posts: Rendered posts; the generator applies the listing order.
            config: Site configuration (title, base URL, truncation).

        Returns:
            Feed document as a string.
        """
        ...


class RSSGenerator(FeedGenerator):
    """Generates an RSS 2.0 feed for content syndication.

    Items follow the global listing order (newest first, slug ascending on
    ties). Every text field is XML-escaped; item descriptions carry the
    rendered HTML, truncated to ``feed_truncate`` characters when configured.
    """

    @property
    def filename(self) -> str:
        """Return RSS filename."""
        return "feed.xml"

    def generate(self, posts: Iterable[Post], config: SiteConfig) -> str:
        """Generate RSS feed content.

        Args:
            posts: Rendered posts.
            config: Site configuration.

        Returns:
            RSS XML content.
        """
        ordered = listing_order(posts)
        base_url = config.base_url
        channel_link = base_url or "/"

        lines = [
            '<?xml version="1.0" encoding="UTF-8"?>',
            '<rss version="2.0">',
            "<channel>",
            f"<title>{escape(config.title)}</title>",
            f"<link>{escape(channel_link)}</link>",
            f"<description>{escape(config.description or config.title)}</description>",
            f"<generator>pageturtle {__version__}</generator>",
        ]
        if ordered:
            lines.append(f"<lastBuildDate>{rfc822_date(ordered[0].date)}</lastBuildDate>")

        for post in ordered:
            lines.extend(self._item(post, config))

        lines.extend(["</channel>", "</rss>", ""])
        return "\n".join(lines)

    def _item(self, post: Post, config: SiteConfig) -> list[str]:
        link = join_root_url(config.base_url, post.url)
        content = truncate_html(post.content, config.feed_truncate)
        content = absolutize_html_urls(content, config.base_url)
        item = [
            "<item>",
            f"<title>{escape(post.title)}</title>",
            f"<link>{escape(link)}</link>",
            f"<guid isPermaLink={quoteattr('true' if config.base_url else 'false')}>"
            f"{escape(link)}</guid>",
            f"<pubDate>{rfc822_date(post.date)}</pubDate>",
        ]
        author = ", ".join(post.authors) or config.author
        if author:
            item.append(f"<author>{escape(author)}</author>")
        for tag in post.tags:
            item.append(f"<category>{escape(tag)}</category>")
        item.append(f"<description>{escape(content)}</description>")
        item.append("</item>")
        return item
