"""Content loading for Pageturtle.

This module discovers Markdown sources, splits their front matter from the body
and produces unrendered Post and Page records. Rendering happens later in the
build orchestrator; the derived fields (content, toc, summary, reading time)
are filled in with ``dataclasses.replace`` so records stay immutable.

Key classes:
- SourceFile: Raw bytes of one source file plus its content hash.
- Heading: A heading extracted from rendered Markdown, used for the TOC.
- Post: A dated blog post that appears in listings and the feed.
- Page: A standalone page outside listings and the feed.
- FileContentLoader: Discovers Markdown files in the posts and pages directories.
- ContentLoader: Facade that loads every source into Post/Page records.

A source either loads completely or raises ContentError; no partial record is
ever returned, and slugs are checked for uniqueness across the whole site.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from .config import SiteConfig
from .errors import ContentError
from .extractors import extract_page_metadata, extract_post_metadata, split_frontmatter
from .utils import digest_bytes, is_hidden, is_markdown

# Page slugs that would collide with generated output directories.
RESERVED_SLUGS = frozenset({"posts", "tags", "archive", "assets", "img"})


@dataclass(frozen=True)
class SourceFile:
    """A source file read from disk.

    Attributes:
        path: Absolute path to the file.
        rel: Posix path relative to the project root, used as a stable identity.
        raw: File contents.
        digest: sha256 hex digest of ``raw``.
    """

    path: Path
    rel: str
    raw: bytes
    digest: str

    @classmethod
    def read(cls, path: Path, project_root: Path) -> SourceFile:
        """Read a file and hash its contents.

        Raises:
            ContentError: If the file cannot be read.
        """
        try:
            raw = path.read_bytes()
        except OSError as exc:
            raise ContentError(path, f"unable to read file: {exc.strerror or exc}") from exc
        try:
            rel = path.relative_to(project_root).as_posix()
        except ValueError:
            rel = path.as_posix()
        return cls(path=path, rel=rel, raw=raw, digest=digest_bytes(raw))

    def text(self) -> str:
        """Decode the contents as UTF-8.

        Raises:
            ContentError: If the file is not valid UTF-8.
        """
        try:
            return self.raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ContentError(self.path, f"file is not valid UTF-8 ({exc.reason})") from exc


@dataclass(frozen=True)
class Heading:
    """Represents a heading extracted from markdown content for TOC generation.

    Attributes:
        level: Heading level (1-6).
        text: Plain text content of the heading.
        anchor: Anchor ID for the heading (unique within its document).
    """

    level: int
    text: str
    anchor: str


@dataclass(frozen=True)
class Post:
    """Represents a blog post.

    Attributes:
        slug: Unique URL-friendly identifier.
        title: Human-readable title.
        date: Publication date (aware, UTC).
        tags: Tags in front matter order.
        authors: Authors from front matter (may be empty).
        description: Explicit description from front matter, if any.
        show_toc: Whether the post template should show a table of contents.
        body: Raw Markdown body without front matter.
        source: The source file this post was loaded from.
        content: Rendered HTML (derived).
        toc: Headings in document order (derived).
        summary: Description or first-paragraph summary (derived).
        reading_time: Estimated reading time in minutes (derived).
    """

    slug: str
    title: str
    date: datetime
    tags: tuple[str, ...]
    authors: tuple[str, ...]
    description: str | None
    show_toc: bool
    body: str
    source: SourceFile
    content: str = ""
    toc: tuple[Heading, ...] = field(default_factory=tuple)
    summary: str = ""
    reading_time: int = 0

    @property
    def url(self) -> str:
        return f"/posts/{self.slug}/"

    @property
    def node_id(self) -> str:
        return f"post:{self.slug}"


@dataclass(frozen=True)
class Page:
    """Represents a standalone page (about, contact, ...).

    Pages share the shape of posts but carry no date or tags and never take
    part in listings or the feed.
    """

    slug: str
    title: str
    description: str | None
    show_toc: bool
    body: str
    source: SourceFile
    content: str = ""
    toc: tuple[Heading, ...] = field(default_factory=tuple)
    summary: str = ""

    @property
    def url(self) -> str:
        return f"/{self.slug}/"

    @property
    def node_id(self) -> str:
        return f"page:{self.slug}"


@dataclass(frozen=True)
class LoadedContent:
    """Result of loading the source tree.

    Attributes:
        posts: Posts in source path order (not yet in listing order).
        pages: Pages in source path order.
    """

    posts: tuple[Post, ...]
    pages: tuple[Page, ...]


class FileContentLoader:
    """Discovers Markdown files in a content directory.

    Files are returned in sorted path order so that loading, and therefore
    error reporting, never depends on filesystem iteration order. Hidden
    files and directories are skipped.

    Attributes:
        content_dir: Directory containing Markdown sources.
    """

    def __init__(self, content_dir: Path):
        self.content_dir = content_dir

    def iter_files(self) -> list[Path]:
        """List all Markdown files below the content directory.

        Returns:
            Sorted list of paths; empty if the directory does not exist.
        """
        if not self.content_dir.is_dir():
            return []
        files: list[Path] = []
        for path in self.content_dir.rglob("*"):
            if not path.is_file():
                continue
            if is_hidden(path.relative_to(self.content_dir)):
                continue
            if is_markdown(path):
                files.append(path)
        return sorted(files, key=lambda p: p.as_posix())


class ContentLoader:
    """Loads posts and pages from the configured source tree.

    Attributes:
        config: Site configuration.
    """

    def __init__(self, config: SiteConfig):
        self.config = config
        self._posts = FileContentLoader(config.posts_dir)
        self._pages = FileContentLoader(config.pages_dir)

    def load(self) -> LoadedContent:
        """Load all content files and create Post and Page records.

        Returns:
            LoadedContent with every post and page.

        Raises:
            ContentError: On the first file that fails to load, or on a slug
                used by two files.
        """
        root = self.config.project_root
        owners: dict[str, Path] = {}

        posts: list[Post] = []
        for path in self._posts.iter_files():
            post = load_post(SourceFile.read(path, root))
            _claim_slug(owners, post.slug, path)
            posts.append(post)

        pages: list[Page] = []
        for path in self._pages.iter_files():
            page = load_page(SourceFile.read(path, root))
            if page.slug in RESERVED_SLUGS:
                raise ContentError(path, f"page slug '{page.slug}' is reserved for generated pages")
            _claim_slug(owners, page.slug, path)
            pages.append(page)

        return LoadedContent(posts=tuple(posts), pages=tuple(pages))


def load_post(source: SourceFile) -> Post:
    """Build an unrendered Post from a source file.

    Raises:
        ContentError: If the front matter is missing or invalid.
    """
    frontmatter, body = split_frontmatter(source.text(), source.path)
    meta = extract_post_metadata(frontmatter, source.path)
    return Post(
        slug=meta.slug,
        title=meta.title,
        date=meta.date,
        tags=meta.tags,
        authors=meta.authors,
        description=meta.description,
        show_toc=meta.show_toc,
        body=body,
        source=source,
    )


def load_page(source: SourceFile) -> Page:
    """Build an unrendered Page from a source file.

    Raises:
        ContentError: If the front matter is invalid.
    """
    frontmatter, body = split_frontmatter(source.text(), source.path)
    meta = extract_page_metadata(frontmatter, source.path)
    return Page(
        slug=meta.slug,
        title=meta.title,
        description=meta.description,
        show_toc=meta.show_toc,
        body=body,
        source=source,
    )


def _claim_slug(owners: dict[str, Path], slug: str, path: Path) -> None:
    first = owners.get(slug)
    if first is not None:
        raise ContentError(
            path,
            f"duplicate slug '{slug}' (already used by {first})",
            related=(first,),
        )
    owners[slug] = path
