"""Front matter and metadata extraction for Pageturtle.

Content files start with a YAML front matter block delimited by ``---`` lines.
This module splits that block from the Markdown body and validates the
metadata each content type needs. Every problem is reported as a
ContentError naming the file, so a source either yields complete metadata or
nothing at all.

Key functions:
- split_frontmatter: Separate the YAML block from the body.
- extract_post_metadata: Validate post metadata (title, date, tags, ...).
- extract_page_metadata: Validate standalone page metadata.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml

from .errors import ContentError
from .utils import normalize_date, slugify, titleize

_OPEN_RE = re.compile(r"\A---[ \t]*\r?\n")
_CLOSE_RE = re.compile(r"^(?:---|\.\.\.)[ \t]*\r?$", re.MULTILINE)


@dataclass(frozen=True)
class PostMetadata:
    """Validated front matter of a post."""

    title: str
    slug: str
    date: datetime
    tags: tuple[str, ...]
    authors: tuple[str, ...]
    description: str | None
    show_toc: bool


@dataclass(frozen=True)
class PageMetadata:
    """Validated front matter of a standalone page."""

    title: str
    slug: str
    description: str | None
    show_toc: bool


def split_frontmatter(text: str, path: Path) -> tuple[dict[str, Any] | None, str]:
    """Extract YAML front matter from content.

    Args:
        text: Raw file content.
        path: Path of the file, for error messages.

    Returns:
        Tuple of (front matter mapping or None when absent, remaining body).

    Raises:
        ContentError: If the block is unterminated, not valid YAML, or not a mapping.
    """
    text = text.lstrip("\ufeff")
    opening = _OPEN_RE.match(text)
    if not opening:
        return None, text

    closing = _CLOSE_RE.search(text, opening.end())
    if not closing:
        raise ContentError(path, "unterminated front matter (missing closing '---')")

    block = text[opening.end() : closing.start()]
    body = text[closing.end() :]
    if body.startswith("\r\n"):
        body = body[2:]
    elif body.startswith("\n"):
        body = body[1:]

    try:
        data = yaml.safe_load(block)
    except yaml.YAMLError as exc:
        raise ContentError(path, f"malformed front matter: {exc}") from exc
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ContentError(path, "front matter must be a mapping of keys to values")
    return data, body


def extract_post_metadata(data: dict[str, Any] | None, path: Path) -> PostMetadata:
    """Validate post front matter.

    Required keys are ``title`` and ``date``. Optional keys: ``slug``,
    ``tags`` (list or comma-separated string), ``authors`` (list or string),
    ``description`` and ``table_of_contents``.

    Args:
        data: Front matter mapping, or None if the file had none.
        path: Path of the source file.

    Returns:
        PostMetadata.

    Raises:
        ContentError: If required keys are missing or values have the wrong type.
    """
    if data is None:
        raise ContentError(path, "missing front matter (posts need a title and a date)")

    title = _require_title(data, path)

    if "date" not in data or data["date"] in (None, ""):
        raise ContentError(path, "front matter is missing 'date'")
    try:
        date = normalize_date(data["date"])
    except ValueError as exc:
        raise ContentError(path, f"invalid date {data['date']!r}: use YYYY-MM-DD") from exc

    slug = _resolve_slug(data, path, fallback=title)

    return PostMetadata(
        title=title,
        slug=slug,
        date=date,
        tags=_string_list(data, "tags", path),
        authors=_string_list(data, "authors", path),
        description=_optional_string(data, "description", path),
        show_toc=_flag(data, "table_of_contents", path),
    )


def extract_page_metadata(data: dict[str, Any] | None, path: Path) -> PageMetadata:
    """Validate page front matter.

    Pages may omit front matter entirely; the title then falls back to the
    titleized filename and the slug to the slugified file stem.

    Args:
        data: Front matter mapping, or None if the file had none.
        path: Path of the source file.

    Returns:
        PageMetadata.
    """
    data = data or {}
    title = _require_title(data, path) if "title" in data else titleize(path.name)
    return PageMetadata(
        title=title,
        slug=_resolve_slug(data, path, fallback=path.stem),
        description=_optional_string(data, "description", path),
        show_toc=_flag(data, "table_of_contents", path),
    )


def _require_title(data: dict[str, Any], path: Path) -> str:
    title = data.get("title")
    if title is None:
        raise ContentError(path, "front matter is missing 'title'")
    if not isinstance(title, (str, int, float)) or isinstance(title, bool):
        raise ContentError(path, "'title' must be a string")
    title = str(title).strip()
    if not title:
        raise ContentError(path, "'title' must not be empty")
    return title


def _resolve_slug(data: dict[str, Any], path: Path, fallback: str) -> str:
    raw = data.get("slug")
    if raw is not None and not isinstance(raw, (str, int)):
        raise ContentError(path, "'slug' must be a string")
    slug = slugify(str(raw)) if raw is not None else slugify(fallback)
    if not slug:
        raise ContentError(path, "could not derive a slug; set 'slug' in the front matter")
    return slug


def _string_list(data: dict[str, Any], key: str, path: Path) -> tuple[str, ...]:
    raw = data.get(key)
    if raw is None:
        return ()
    if isinstance(raw, str):
        items = [item.strip() for item in raw.split(",")]
    elif isinstance(raw, list) and all(
        isinstance(item, (str, int, float)) and not isinstance(item, bool) for item in raw
    ):
        items = [str(item).strip() for item in raw]
    else:
        raise ContentError(path, f"'{key}' must be a list of strings")
    seen: list[str] = []
    for item in items:
        if item and item not in seen:
            seen.append(item)
    return tuple(seen)


def _optional_string(data: dict[str, Any], key: str, path: Path) -> str | None:
    raw = data.get(key)
    if raw is None:
        return None
    if not isinstance(raw, str):
        raise ContentError(path, f"'{key}' must be a string")
    return raw.strip() or None


def _flag(data: dict[str, Any], key: str, path: Path) -> bool:
    raw = data.get(key, False)
    if not isinstance(raw, bool):
        raise ContentError(path, f"'{key}' must be true or false")
    return raw
