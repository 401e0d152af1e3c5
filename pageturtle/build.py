"""Site building functionality for Pageturtle.

This module contains the build orchestrator. A build pass loads every source,
works out which nodes of the dependency graph are stale, renders stale leaves
(posts, pages, static files) on a thread pool, then renders the aggregate
nodes (index, archive, tag listings, feed) over the globally ordered post set.
The artifacts of every node are assembled into an immutable BuildSnapshot and
published atomically.

Key classes and functions:
- Orchestrator: Owns the committed graph, revision and live snapshot.
- BuildResult: What one successful pass produced.
- build_site: One-shot build of a project directory.

A failed pass raises BuildError and leaves the committed graph, the revision
and the published output exactly as they were.
"""

from __future__ import annotations

import json
import math
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from markupsafe import Markup

from . import __version__
from .assets import AssetPipeline
from .collections import PostCollection
from .config import CONFIG_FILENAME, SiteConfig, load_config
from .content import ContentLoader, Page, Post
from .errors import (
    BuildError,
    ConfigError,
    ContentError,
    OutputError,
    PageturtleError,
    ParseError,
    TemplateError,
)
from .feeds import RSSGenerator
from .graph import BuildGraph, BuildNode, NodeKind, NodeState
from .html_utils import join_root_url, strip_tags, summarize
from .protocols import ContentRenderer, Publisher
from .renderers import MarkdownRenderer, build_toc_tree, render_toc
from .snapshot import ArtifactConflict, BuildSnapshot, DirectoryPublisher, OutputArtifact
from .templates import TemplateEngine
from .utils import count_words, digest_parts, format_display_date, slugify

WORDS_PER_MINUTE = 225


@dataclass
class BuildResult:
    """Result of a site build operation.

    Attributes:
        snapshot: The snapshot produced (and published) by the pass.
        rendered: Ids of nodes rendered in this pass.
        skipped: Ids of nodes whose previous output was reused.
        posts: Rendered posts in listing order.
    """

    snapshot: BuildSnapshot
    rendered: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    posts: PostCollection = field(default_factory=lambda: PostCollection(()))

    @property
    def revision(self) -> int:
        return self.snapshot.revision


@dataclass
class _Job:
    node: BuildNode
    inputs_hash: str
    render: Callable[[], tuple[Post | Page | None, tuple[OutputArtifact, ...]]]


class Orchestrator:
    """Runs incremental build passes for one site.

    Passes are serialised; the dev server's consumer thread and the CLI both
    call ``build`` and never overlap.

    Attributes:
        config: Site configuration.
        publisher: Writes snapshots to disk, or None to keep builds in memory.
        graph: Committed dependency graph from the last successful pass.
        snapshot: Last successfully built snapshot.
    """

    def __init__(
        self,
        config: SiteConfig,
        publisher: Publisher | None = None,
        markdown: ContentRenderer | None = None,
    ):
        self.config = config
        self.publisher = publisher
        self.engine = TemplateEngine(config.templates_dir)
        self.markdown = markdown or MarkdownRenderer()
        self.loader = ContentLoader(config)
        self.assets = AssetPipeline(config)
        self.feed = RSSGenerator()
        self.graph = BuildGraph()
        self.snapshot = BuildSnapshot(revision=0)
        self._lock = threading.Lock()

    @property
    def revision(self) -> int:
        return self.snapshot.revision

    def build(self) -> BuildResult:
        """Run one build pass.

        Returns:
            BuildResult for the new revision.

        Raises:
            BuildError: On the first failure of the pass, naming its source.
        """
        with self._lock:
            try:
                return self._build()
            except BuildError:
                raise
            except (PageturtleError, ArtifactConflict, OSError) as exc:
                raise _as_build_error(exc, str(self.config.project_root)) from exc

    def _build(self) -> BuildResult:
        graph = self.graph.copy()
        self.engine.reload()
        site = self._site_context()
        settings = digest_parts(
            [
                json.dumps(site, sort_keys=True),
                str(self.config.feed_truncate),
                str(self.config.enable_rss),
            ]
        )
        fingerprints: dict[str, str] = {}

        def fingerprint(template_id: str) -> str:
            if template_id not in fingerprints:
                fingerprints[template_id] = self.engine.fingerprint(template_id)
            return fingerprints[template_id]

        content = self.loader.load()
        previous_content = {node.id for node in graph.leaves() if not node.id.startswith("file:")}
        keep: set[str] = set()
        jobs: list[_Job] = []

        for post in content.posts:
            node = graph.ensure(post.node_id, NodeKind.LEAF, post.source.rel)
            inputs = digest_parts([post.source.digest, fingerprint("post.html"), settings])
            keep.add(node.id)
            if graph.needs_render(node.id, inputs):
                jobs.append(_Job(node, inputs, lambda post=post: self._render_post(post, site)))

        for page in content.pages:
            node = graph.ensure(page.node_id, NodeKind.LEAF, page.source.rel)
            inputs = digest_parts([page.source.digest, fingerprint("page.html"), settings])
            keep.add(node.id)
            if graph.needs_render(node.id, inputs):
                jobs.append(_Job(node, inputs, lambda page=page: self._render_page(page, site)))

        content_ids = set(keep)
        content_changed = bool(jobs) or content_ids != previous_content

        for asset in self.assets.discover():
            artifact = asset.read()
            node = graph.ensure(asset.node_id, NodeKind.LEAF, asset.rel)
            keep.add(node.id)
            if graph.needs_render(node.id, artifact.digest):
                jobs.append(_Job(node, artifact.digest, lambda artifact=artifact: (None, (artifact,))))

        jobs.sort(key=lambda job: job.node.id)
        rendered = [job.node.id for job in jobs]
        self._render_leaves(jobs)

        if content_changed:
            graph.invalidate(NodeKind.AGGREGATE)

        documents = [graph.get(post.node_id).document for post in content.posts]
        posts = PostCollection(documents)
        leaf_digest = digest_parts(
            f"{node_id}={graph.get(node_id).inputs_hash}" for node_id in sorted(content_ids)
        )

        for node_id, template_id, render in self._aggregates(posts, site):
            source = template_id or self.feed.filename
            node = graph.ensure(node_id, NodeKind.AGGREGATE, source)
            inputs = digest_parts(
                [leaf_digest, fingerprint(template_id) if template_id else "rss", settings]
            )
            keep.add(node_id)
            if not graph.needs_render(node_id, inputs):
                continue
            node.state = NodeState.RENDERING
            try:
                artifacts = render()
            except Exception as exc:
                raise _as_build_error(exc, node.source) from exc
            node.artifacts = artifacts
            node.inputs_hash = inputs
            node.state = NodeState.FRESH
            rendered.append(node_id)

        graph.remove_missing(keep)
        snapshot = BuildSnapshot.assemble(
            self.revision + 1,
            (artifact for node in graph for artifact in node.artifacts),
        )
        if self.publisher is not None:
            self.publisher.publish(snapshot)

        self.graph = graph
        self.snapshot = snapshot
        done = set(rendered)
        return BuildResult(
            snapshot=snapshot,
            rendered=sorted(done),
            skipped=[node.id for node in graph if node.id not in done],
            posts=posts,
        )

    def _render_leaves(self, jobs: list[_Job]) -> None:
        """Render stale leaves in parallel and record their results.

        Results are gathered in node id order; the first failure cancels the
        jobs that have not started yet.
        """
        if not jobs:
            return
        for job in jobs:
            job.node.state = NodeState.RENDERING
        workers = max(1, min(self.config.worker_count, len(jobs)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="pageturtle-render") as pool:
            futures = [(job, pool.submit(job.render)) for job in jobs]
            for job, future in futures:
                try:
                    document, artifacts = future.result()
                except Exception as exc:
                    for _job, pending in futures:
                        pending.cancel()
                    raise _as_build_error(exc, job.node.source) from exc
                job.node.document = document
                job.node.artifacts = artifacts
                job.node.inputs_hash = job.inputs_hash
                job.node.state = NodeState.FRESH

    def _render_post(self, post: Post, site: dict[str, Any]) -> tuple[Post, tuple[OutputArtifact, ...]]:
        result = self.markdown.render(post.body, source=post.source.rel)
        words = count_words(strip_tags(result.html))
        post = replace(
            post,
            content=result.html,
            toc=result.headings,
            summary=post.description or summarize(result.html),
            reading_time=max(1, math.ceil(words / WORDS_PER_MINUTE)),
        )
        html = self.engine.render("post.html", {"site": site, "post": self._post_context(post)})
        return post, (OutputArtifact.from_text(f"posts/{post.slug}/index.html", html),)

    def _render_page(self, page: Page, site: dict[str, Any]) -> tuple[Page, tuple[OutputArtifact, ...]]:
        result = self.markdown.render(page.body, source=page.source.rel)
        page = replace(
            page,
            content=result.html,
            toc=result.headings,
            summary=page.description or summarize(result.html),
        )
        context = {
            "site": site,
            "page": {
                "title": page.title,
                "slug": page.slug,
                "url": page.url,
                "description": page.description,
                "summary": page.summary,
                "content": Markup(page.content),
                "toc": build_toc_tree(page.toc),
                "toc_html": render_toc(page.toc) if page.show_toc and page.toc else None,
            },
        }
        html = self.engine.render("page.html", context)
        return page, (OutputArtifact.from_text(f"{page.slug}/index.html", html),)

    def _aggregates(self, posts: PostCollection, site: dict[str, Any]):
        """Yield ``(node_id, template_id, render)`` for every aggregate node."""
        entries = [self._listing_entry(post) for post in posts]

        def page(template_id: str, path: str, context: dict[str, Any]):
            def render() -> tuple[OutputArtifact, ...]:
                html = self.engine.render(template_id, {"site": site, **context})
                return (OutputArtifact.from_text(path, html),)

            return render

        yield "index", "index.html", page("index.html", "index.html", {"posts": entries})

        years = [
            {"year": year, "posts": [self._listing_entry(p) for p in year_posts]}
            for year, year_posts in posts.by_year()
        ]
        yield "archive", "archive.html", page("archive.html", "archive/index.html", {"years": years})

        labels = posts.tag_labels()
        tags = posts.tags()
        overview = [
            {
                "name": labels[slug],
                "slug": slug,
                "url": f"/tags/{slug}/",
                "count": len(tagged),
            }
            for slug, tagged in tags.items()
        ]
        yield "tags", "tags.html", page("tags.html", "tags/index.html", {"tags": overview})

        for entry in overview:
            tagged = [self._listing_entry(p) for p in tags[entry["slug"]]]
            yield (
                f"tag:{entry['slug']}",
                "tag.html",
                page("tag.html", f"tags/{entry['slug']}/index.html", {"tag": entry, "posts": tagged}),
            )

        if self.config.enable_rss:
            def feed() -> tuple[OutputArtifact, ...]:
                xml = self.feed.generate(posts, self.config)
                return (OutputArtifact.from_text(self.feed.filename, xml),)

            yield "feed", None, feed

    def _site_context(self) -> dict[str, Any]:
        config = self.config
        return {
            "title": config.title,
            "description": config.description,
            "author": config.author,
            "base_url": config.base_url,
            "links": [{"name": link.name, "href": link.href} for link in config.links],
            "feed_url": "/feed.xml" if config.enable_rss else None,
            "generator": f"pageturtle {__version__}",
        }

    def _listing_entry(self, post: Post) -> dict[str, Any]:
        return {
            "title": post.title,
            "slug": post.slug,
            "url": post.url,
            "permalink": join_root_url(self.config.base_url, post.url),
            "date": post.date.strftime("%Y-%m-%d"),
            "date_display": format_display_date(post.date),
            "tags": _tag_links(post.tags),
            "authors": list(post.authors),
            "summary": post.summary,
            "reading_time": post.reading_time,
        }

    def _post_context(self, post: Post) -> dict[str, Any]:
        entry = self._listing_entry(post)
        entry.update(
            {
                "description": post.description,
                "content": Markup(post.content),
                "toc": build_toc_tree(post.toc),
                "toc_html": render_toc(post.toc) if post.show_toc and post.toc else None,
            }
        )
        return entry


def build_site(project_root: Path) -> BuildResult:
    """Build the site in ``project_root`` and publish it to its output directory.

    Args:
        project_root: Root directory of the project.

    Returns:
        BuildResult of the pass.

    Raises:
        BuildError: If configuration, content, templates or output fail.
    """
    try:
        config = load_config(project_root)
    except ConfigError as exc:
        raise BuildError(project_root / CONFIG_FILENAME, str(exc), exc) from exc
    return Orchestrator(config, DirectoryPublisher(config.output_dir)).build()


def _tag_links(tags: tuple[str, ...]) -> list[dict[str, str]]:
    links = []
    for tag in tags:
        slug = slugify(tag)
        if slug:
            links.append({"name": tag, "slug": slug, "url": f"/tags/{slug}/"})
    return links


def _as_build_error(exc: Exception, source: str) -> BuildError:
    """Wrap a component failure, keeping the file or template it came from."""
    if isinstance(exc, BuildError):
        return exc
    if isinstance(exc, ContentError):
        return BuildError(exc.path, exc.message, exc)
    if isinstance(exc, ParseError):
        location = f" (line {exc.line})" if exc.line is not None else ""
        return BuildError(exc.source or source, f"{exc.message}{location}", exc)
    if isinstance(exc, TemplateError):
        suffix = f" while rendering {source}" if source != exc.template_id else ""
        return BuildError(exc.template_id, f"{exc.message}{suffix}", exc)
    if isinstance(exc, OutputError):
        reason = exc.original_error.strerror or str(exc.original_error)
        return BuildError(exc.path, reason, exc)
    if isinstance(exc, ArtifactConflict):
        return BuildError(exc.path, str(exc), exc)
    if isinstance(exc, OSError):
        return BuildError(exc.filename or source, exc.strerror or str(exc), exc)
    if isinstance(exc, PageturtleError):
        return BuildError(source, str(exc), exc)
    return BuildError(source, f"{type(exc).__name__}: {exc}", exc)
