"""Markdown rendering for Pageturtle.

This module converts a Markdown body into an HTML fragment with mistune and
collects the document's headings for the table of contents.

Key classes and functions:
- MarkdownRenderer: Renders a body into a RenderedMarkdown result.
- RenderedMarkdown: HTML fragment plus ordered headings.
- AnchorRegistry: Assigns unique, deterministic heading anchors per document.
- check_code_fences: Rejects documents with an unterminated fenced code block.
- build_toc_tree / render_toc: Nest the flat heading list for templates.

Dialect: CommonMark as implemented by mistune 3, plus the strikethrough,
footnotes, table and url plugins. Raw HTML passes through. Inline syntax mistune
does not recognise is left as literal text.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Any

import mistune
from mistune.plugins import import_plugin
from markupsafe import Markup

from .content import Heading
from .errors import ParseError
from .html_utils import escape_html, strip_tags
from .utils import slugify

MARKDOWN_PLUGINS = ["strikethrough", "footnotes", "table", "url"]

_URL_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*:")


@dataclass(frozen=True)
class RenderedMarkdown:
    """Result of rendering a Markdown body.

    Attributes:
        html: Rendered HTML fragment.
        headings: Headings in document order with their anchors.
    """

    html: str
    headings: tuple[Heading, ...]


class AnchorRegistry:
    """Hands out unique anchor ids within one document.

    The first heading with a given slug keeps it; later ones get ``-1``,
    ``-2``, ... in document order. A suffix already taken by a literal heading
    (e.g. a heading titled "Intro 1") is skipped.
    """

    def __init__(self) -> None:
        self._used: set[str] = set()
        self._counters: dict[str, int] = {}

    def claim(self, text: str) -> str:
        """Return a unique anchor for heading text.

        Args:
            text: Plain heading text.

        Returns:
            Anchor id unique within this registry.
        """
        base = slugify(text) or "section"
        anchor = base
        if anchor in self._used:
            count = self._counters.get(base, 0)
            while anchor in self._used:
                count += 1
                anchor = f"{base}-{count}"
            self._counters[base] = count
        self._used.add(anchor)
        return anchor


class _FenceCheckingBlockParser(mistune.BlockParser):
    """Block parser that rejects fenced code blocks left open.

    mistune treats an unclosed fence as running to the end of its container.
    The closing-fence search here mirrors the one mistune performs, so list
    items and blockquotes are judged on their own content.
    """

    def __init__(self, source: str | None = None) -> None:
        super().__init__()
        self.source = source

    def parse_fenced_code(self, m: re.Match[str], state: mistune.BlockState) -> int | None:
        end_pos = super().parse_fenced_code(m, state)
        if end_pos is None:
            return None
        marker = m.group("fenced_2")
        closing = re.compile(
            r"^ {0,3}" + re.escape(marker[0]) + "{" + str(len(marker)) + r",}[ \t]*(?:\n|$)",
            re.M,
        )
        if not closing.search(state.src, m.end() + 1):
            raise ParseError(
                f"unterminated code fence '{marker}'",
                line=_fence_line(m, state),
                source=self.source,
            )
        return end_pos


def _fence_line(m: re.Match[str], state: mistune.BlockState) -> int | None:
    if state.parent is None:
        return state.src.count("\n", 0, m.start()) + 1
    # Nested states hold dedented container text; locate the opener in the body.
    root = state
    while root.parent is not None:
        root = root.parent
    opener = m.group(0).strip()
    matches = [
        number
        for number, line in enumerate(root.src.splitlines(), start=1)
        if line.rstrip().endswith(opener)
    ]
    return matches[-1] if matches else None


def _create_markdown(
    renderer: mistune.BaseRenderer | None, source: str | None
) -> mistune.Markdown:
    return mistune.Markdown(
        renderer=renderer,
        block=_FenceCheckingBlockParser(source),
        inline=mistune.InlineParser(),
        plugins=[import_plugin(name) for name in MARKDOWN_PLUGINS],
    )


def check_code_fences(text: str, source: str | None = None) -> None:
    """Verify that every fenced code block is closed.

    A fence opens with three or more backticks or tildes and closes with the
    same character repeated at least as many times and nothing else on the
    line, inside the same container (top level, list item or blockquote).

    Args:
        text: Markdown body.
        source: Document identity for the error message.

    Raises:
        ParseError: If a fence is still open at the end of its container.
    """
    _create_markdown(None, source)(text)


def rewrite_image_url(url: str) -> str:
    """Point relative image references at the published ``/img/`` directory.

    Images stored next to a post are copied to ``/img/<filename>``; absolute
    paths and URLs with a scheme are left alone.

    Args:
        url: Image URL as written in Markdown.

    Returns:
        Rewritten URL.
    """
    if not url or url.startswith(("/", "#", "//")) or _URL_SCHEME_RE.match(url):
        return url
    name = PurePosixPath(url.split("?", 1)[0].split("#", 1)[0]).name
    return f"/img/{name}" if name else url


class _TocRenderer(mistune.HTMLRenderer):
    """HTML renderer that anchors headings and records them for the TOC.

    Attributes:
        headings: Headings collected during rendering, in document order.
    """

    def __init__(self) -> None:
        super().__init__(escape=False)
        self.headings: list[Heading] = []
        self._anchors = AnchorRegistry()

    def heading(self, text: str, level: int, **attrs: Any) -> str:
        """Render a heading with a unique id and track it for the TOC."""
        plain = " ".join(strip_tags(text).split())
        anchor = self._anchors.claim(plain)
        self.headings.append(Heading(level=level, text=plain, anchor=anchor))
        return f'<h{level} id="{anchor}">{text}</h{level}>\n'

    def image(self, text: str, url: str, title: str | None = None) -> str:
        """Render an image with its source rewritten to the published location."""
        return super().image(text, rewrite_image_url(url), title)

    def block_code(self, code: str, info: str | None = None) -> str:
        """Render a fenced or indented code block without highlighting."""
        language = info.split()[0] if info and info.strip() else ""
        lang_class = f' class="language-{escape_html(language)}"' if language else ""
        return f"<pre><code{lang_class}>{escape_html(code)}</code></pre>\n"


class MarkdownRenderer:
    """Renders Markdown bodies to HTML.

    A fresh mistune parser is created per document because the renderer
    collects per-document state (headings, anchors); instances of this class
    are therefore safe to share between worker threads.
    """

    def render(self, body: str, source: str | None = None) -> RenderedMarkdown:
        """Render Markdown content to HTML.

        Args:
            body: Markdown source without front matter.
            source: Document identity used in error messages.

        Returns:
            RenderedMarkdown with the HTML fragment and heading list.

        Raises:
            ParseError: If the document contains an unterminated code fence.
        """
        renderer = _TocRenderer()
        html = _create_markdown(renderer, source)(body)
        return RenderedMarkdown(html=html, headings=tuple(renderer.headings))


def build_toc_tree(headings: tuple[Heading, ...] | list[Heading]) -> list[dict[str, Any]]:
    """Nest a flat heading list by level.

    Each entry becomes ``{"title", "anchor", "level", "children"}``; a heading
    becomes a child of the closest preceding heading with a lower level.

    Args:
        headings: Headings in document order.

    Returns:
        List of root entries.
    """
    roots: list[dict[str, Any]] = []
    stack: list[dict[str, Any]] = []
    for heading in headings:
        entry = {
            "title": heading.text,
            "anchor": heading.anchor,
            "level": heading.level,
            "children": [],
        }
        while stack and stack[-1]["level"] >= heading.level:
            stack.pop()
        if stack:
            stack[-1]["children"].append(entry)
        else:
            roots.append(entry)
        stack.append(entry)
    return roots


def render_toc(headings: tuple[Heading, ...] | list[Heading]) -> Markup:
    """Render headings as a nested ``<ul>`` table of contents.

    Args:
        headings: Headings in document order.

    Returns:
        Markup-safe HTML string, or empty Markup if there are no headings.
    """
    tree = build_toc_tree(headings)
    if not tree:
        return Markup("")
    return Markup(_render_entries(tree))


def _render_entries(entries: list[dict[str, Any]]) -> str:
    parts = ["<ul>"]
    for entry in entries:
        parts.append(
            f'<li><a href="#{escape_html(entry["anchor"])}">{escape_html(entry["title"])}</a>'
        )
        if entry["children"]:
            parts.append(_render_entries(entry["children"]))
        parts.append("</li>")
    parts.append("</ul>")
    return "".join(parts)
