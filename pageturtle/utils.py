"""Utility functions for Pageturtle.

This module contains small helpers used throughout the codebase: slugs,
titles, hashing, date normalization and Markdown file detection.

Key functions:
    slugify: Convert arbitrary text to a URL slug.
    titleize: Convert filenames to human-readable titles.
    digest_bytes / digest_parts: Content hashes used by the dependency graph.
    normalize_date: Coerce front matter dates to aware UTC datetimes.
    format_display_date: "January 5, 2024" style dates for templates.
    rfc822_date: Dates for RSS pubDate fields.
    is_markdown: Check if a path is a Markdown file.
"""

from __future__ import annotations

import hashlib
import re
import unicodedata
from collections.abc import Iterable
from datetime import date, datetime, timezone
from email.utils import format_datetime
from pathlib import Path

MARKDOWN_SUFFIXES = (".md", ".markdown")

_MONTHS = (
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
)


def slugify(text: str) -> str:
    """Convert text to a lowercase, hyphen-separated URL slug.

    Accents are folded to ASCII and every run of other characters becomes a
    single hyphen.

    Args:
        text: Heading, title or filename stem.

    Returns:
        URL-friendly slug, or an empty string when nothing usable remains.

    Examples:
        >>> slugify("Hello, World!")
        'hello-world'

        >>> slugify("Crème brûlée")
        'creme-brulee'
    """
    normalized = unicodedata.normalize("NFKD", text)
    ascii_text = normalized.encode("ascii", "ignore").decode("ascii")
    cleaned = re.sub(r"[^a-zA-Z0-9]+", "-", ascii_text)
    return cleaned.strip("-").lower()


def titleize(filename: str) -> str:
    """Convert a filename to a human-readable title.

    Replaces hyphens and underscores with spaces and capitalizes each word.

    Args:
        filename: Filename with or without extension.

    Returns:
        Human-readable title string.

    Examples:
        >>> titleize("getting-started.md")
        'Getting Started'
    """
    base = Path(filename).stem
    words = re.split(r"[\s\-_]+", base)
    return " ".join(word.capitalize() for word in words if word) or "Untitled"


def digest_bytes(data: bytes) -> str:
    """Return the sha256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def digest_parts(parts: Iterable[str]) -> str:
    """Hash an ordered sequence of strings into one digest.

    Parts are NUL-separated so ``("ab", "c")`` and ``("a", "bc")`` differ.

    Args:
        parts: Strings to combine, in a caller-defined stable order.

    Returns:
        sha256 hex digest.
    """
    digest = hashlib.sha256()
    for part in parts:
        digest.update(part.encode("utf-8"))
        digest.update(b"\0")
    return digest.hexdigest()


def normalize_date(value: object) -> datetime:
    """Coerce a front matter date into an aware UTC datetime.

    Accepts ``datetime.date``, ``datetime.datetime`` and ISO 8601 strings
    (``2024-01-15`` or ``2024-01-15T10:00:00Z``). Naive values are taken as UTC.

    Args:
        value: Raw value from YAML.

    Returns:
        Timezone-aware datetime in UTC.

    Raises:
        ValueError: If the value cannot be interpreted as a date.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    else:
        raise ValueError(f"unsupported date value {value!r}")
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_display_date(value: datetime) -> str:
    """Format a date like ``January 5, 2024``."""
    return f"{_MONTHS[value.month - 1]} {value.day}, {value.year}"


def rfc822_date(value: datetime) -> str:
    """Format a date for RSS, e.g. ``Mon, 01 Jan 2024 00:00:00 +0000``."""
    return format_datetime(value.astimezone(timezone.utc))


def is_markdown(path: Path) -> bool:
    """Check if a path is a Markdown file.

    Args:
        path: Path to check.

    Returns:
        True if the file has a .md or .markdown extension (case-insensitive).
    """
    return path.suffix.lower() in MARKDOWN_SUFFIXES


def is_hidden(path: Path) -> bool:
    """Check if any component of a relative path is hidden (starts with a dot)."""
    return any(part.startswith(".") for part in path.parts)


def count_words(text: str) -> int:
    return len(re.findall(r"\w+", text))
