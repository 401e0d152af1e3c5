"""HTML utility functions for Pageturtle.

This module provides HTML string manipulation used by the renderer, the
orchestrator and the feed generator.

Functions:
    escape_html: Escape special HTML characters in a string.
    strip_tags: Remove tags and decode entities, leaving plain text.
    first_paragraph_text: Plain text of the first <p> element.
    summarize: Short description built from the first paragraph.
    truncate_html: Shorten HTML without cutting inside a tag or entity.
    absolutize_html_urls: Convert root-relative URLs to absolute in HTML.
    join_root_url: Join a base URL with a path.
"""

from __future__ import annotations

import html
import re

# URL attribute regex pattern for finding href, src, action attributes
_URL_ATTR_RE = re.compile(
    r'(?P<prefix>\b(?:href|src|action)=["\'])(?P<url>[^"\']+)(?P<suffix>["\'])'
)

# URL prefixes that should not be modified
_URL_SKIP_PREFIXES = (
    "http://",
    "https://",
    "//",
    "mailto:",
    "tel:",
    "#",
    "javascript:",
    "data:",
)

_TAG_RE = re.compile(r"<[^>]*>")
_TOKEN_RE = re.compile(r"<!--.*?-->|<[^>]*>|&#?\w+;|[^<&]+|[<&]", re.DOTALL)
_TAG_NAME_RE = re.compile(r"</?\s*([a-zA-Z][a-zA-Z0-9]*)")
_FIRST_PARAGRAPH_RE = re.compile(r"<p>(.*?)</p>", re.DOTALL)

_VOID_ELEMENTS = frozenset(
    {
        "area",
        "base",
        "br",
        "col",
        "embed",
        "hr",
        "img",
        "input",
        "link",
        "meta",
        "source",
        "track",
        "wbr",
    }
)

SUMMARY_WORDS = 25


def escape_html(text: str) -> str:
    """Escape special HTML characters in a string.

    Args:
        text: The string to escape.

    Returns:
        The escaped string, safe for inclusion in HTML.

    Examples:
        >>> escape_html('<script>alert("XSS")</script>')
        '&lt;script&gt;alert(&quot;XSS&quot;)&lt;/script&gt;'
    """
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
    )


def strip_tags(fragment: str) -> str:
    """Remove HTML tags and decode entities.

    Args:
        fragment: HTML fragment.

    Returns:
        Plain text.
    """
    return html.unescape(_TAG_RE.sub("", fragment))


def first_paragraph_text(fragment: str) -> str:
    """Return the whitespace-collapsed plain text of the first paragraph."""
    match = _FIRST_PARAGRAPH_RE.search(fragment)
    if not match:
        return ""
    return " ".join(strip_tags(match.group(1)).split())


def summarize(fragment: str, words: int = SUMMARY_WORDS) -> str:
    """Build a short description from the first paragraph of rendered HTML.

    Takes the first ``words`` words and appends ``...``.

    Args:
        fragment: Rendered HTML body.
        words: Number of words to keep.

    Returns:
        Summary text, or an empty string when the body has no paragraph.
    """
    text = first_paragraph_text(fragment)
    if not text:
        return ""
    return " ".join(text.split()[:words]) + "..."


def truncate_html(fragment: str, limit: int, ellipsis: str = "…") -> str:
    """Truncate HTML to roughly ``limit`` characters of visible text.

    The cut happens at a word boundary inside a text run, never inside a tag or
    an entity, and every element still open at the cut point is closed in
    reverse order.

    Args:
        fragment: HTML to shorten.
        limit: Maximum number of visible characters; 0 or less disables truncation.
        ellipsis: Text appended when content was dropped.

    Returns:
        Well-formed truncated HTML, or the input unchanged if it already fits.

    Examples:
        >>> truncate_html("<p>Hello <em>brave new</em> world</p>", 12)
        '<p>Hello <em>brave…</em></p>'
    """
    if limit <= 0:
        return fragment

    out: list[str] = []
    open_tags: list[str] = []
    remaining = limit

    for match in _TOKEN_RE.finditer(fragment):
        token = match.group(0)
        if token.startswith("<!--"):
            out.append(token)
            continue
        if token.startswith("<") and len(token) > 1:
            _track_tag(token, open_tags)
            out.append(token)
            continue
        if token.startswith("&") and token.endswith(";"):
            if remaining < 1:
                return _close(out, open_tags, ellipsis)
            remaining -= 1
            out.append(token)
            continue

        if len(token) <= remaining:
            remaining -= len(token)
            out.append(token)
            continue

        head = token[:remaining]
        if not token[remaining].isspace():
            if " " in head:
                head = head[: head.rindex(" ")]
            elif remaining < limit:
                # Only whole words once some text has been kept.
                head = ""
        out.append(head.rstrip())
        return _close(out, open_tags, ellipsis)

    return fragment


def _track_tag(token: str, open_tags: list[str]) -> None:
    name_match = _TAG_NAME_RE.match(token)
    if not name_match:
        return
    name = name_match.group(1).lower()
    if token.startswith("</"):
        if name in open_tags:
            # Drop everything up to and including the innermost matching tag.
            index = len(open_tags) - 1 - open_tags[::-1].index(name)
            del open_tags[index:]
        return
    if name in _VOID_ELEMENTS or token.endswith("/>"):
        return
    open_tags.append(name)


def _close(out: list[str], open_tags: list[str], ellipsis: str) -> str:
    out.append(ellipsis)
    out.extend(f"</{name}>" for name in reversed(open_tags))
    return "".join(out)


def join_root_url(root_url: str, path: str) -> str:
    """Safely join a root URL and a path, avoiding double slashes.

    Args:
        root_url: Base URL (e.g., https://example.com/blog).
        path: Path beginning with or without a leading slash.

    Returns:
        Combined URL with proper slash handling.

    Examples:
        >>> join_root_url('https://example.com', '/about')
        'https://example.com/about'

        >>> join_root_url('https://example.com/', 'about')
        'https://example.com/about'
    """
    if not root_url:
        return path
    base = root_url.rstrip("/")
    suffix = path if path.startswith("/") else f"/{path}"
    return f"{base}{suffix}"


def absolutize_html_urls(fragment: str, root_url: str) -> str:
    """Rewrite root-relative URLs in HTML to absolute URLs.

    Processes href, src, and action attributes in HTML, converting
    root-relative URLs (starting with /) to absolute URLs using the
    provided root_url. External URLs, anchors, mailto/tel links, and
    javascript: URLs are left unchanged.

    Args:
        fragment: HTML content to process.
        root_url: Base URL to prepend to relative paths.

    Returns:
        HTML with relative URLs converted to absolute.

    Examples:
        >>> absolutize_html_urls('<a href="/about">About</a>', 'https://example.com')
        '<a href="https://example.com/about">About</a>'
    """
    if not root_url:
        return fragment

    def repl(match: re.Match) -> str:
        url = match.group("url")
        if not url or url.startswith(_URL_SKIP_PREFIXES):
            return match.group(0)
        absolute = join_root_url(root_url, url)
        return f"{match.group('prefix')}{absolute}{match.group('suffix')}"

    return _URL_ATTR_RE.sub(repl, fragment)
