import xml.etree.ElementTree as ET
from pathlib import Path

import pytest

from pageturtle.build import Orchestrator, build_site
from pageturtle.config import load_config
from pageturtle.errors import BuildError, OutputError
from pageturtle.graph import NodeState
from pageturtle.snapshot import ArtifactConflict, BuildSnapshot, DirectoryPublisher, OutputArtifact


def read_tree(root: Path) -> dict[str, bytes]:
    return {
        path.relative_to(root).as_posix(): path.read_bytes()
        for path in sorted(root.rglob("*"))
        if path.is_file()
    }


def make_orchestrator(project: Path) -> Orchestrator:
    config = load_config(project)
    return Orchestrator(config, DirectoryPublisher(config.output_dir))


def test_build_site_writes_full_layout(project):
    result = build_site(project)
    dist = project / "dist"
    expected = {
        "index.html",
        "archive/index.html",
        "tags/index.html",
        "tags/python/index.html",
        "tags/notes/index.html",
        "posts/a/index.html",
        "posts/b/index.html",
        "about/index.html",
        "feed.xml",
        "assets/styles.css",
    }
    assert set(read_tree(dist)) == expected
    assert set(result.snapshot.artifacts) == expected
    assert result.revision == 1
    assert [p.slug for p in result.posts] == ["b", "a"]

    post_html = (dist / "posts" / "a" / "index.html").read_text(encoding="utf-8")
    assert "<title>Post A | Test Blog</title>" in post_html
    assert "<p>First post body.</p>" in post_html
    assert 'href="/tags/python/"' in post_html
    assert "January 1, 2024" in post_html
    assert "1 min read" in post_html
    assert (dist / "assets" / "styles.css").read_text(encoding="utf-8") == "body { color: black; }\n"
    assert "About me." in (dist / "about" / "index.html").read_text(encoding="utf-8")


def test_listings_and_feed_order_newest_first(project):
    build_site(project)
    dist = project / "dist"
    index = (dist / "index.html").read_text(encoding="utf-8")
    assert index.index("/posts/b/") < index.index("/posts/a/")

    archive = (dist / "archive" / "index.html").read_text(encoding="utf-8")
    assert archive.index("Post B") < archive.index("Post A")

    tag_page = (dist / "tags" / "python" / "index.html").read_text(encoding="utf-8")
    assert tag_page.index("Post B") < tag_page.index("Post A")
    notes_page = (dist / "tags" / "notes" / "index.html").read_text(encoding="utf-8")
    assert "Post A" in notes_page and "Post B" not in notes_page

    feed = ET.fromstring((dist / "feed.xml").read_bytes())
    assert [item.findtext("link") for item in feed.iter("item")] == [
        "https://example.com/posts/b/",
        "https://example.com/posts/a/",
    ]


def test_same_day_posts_sort_by_slug(project, add_post):
    add_post(project, "0-zeta.md", "Zeta", "2024-03-01")
    add_post(project, "1-alpha.md", "Alpha", "2024-03-01")
    result = build_site(project)
    assert [p.slug for p in result.posts] == ["alpha", "zeta", "b", "a"]
    feed = ET.fromstring(result.snapshot.get("feed.xml").data)
    assert [item.findtext("title") for item in feed.iter("item")] == ["Alpha", "Zeta", "Post B", "Post A"]


def test_builds_are_deterministic(project):
    first = build_site(project)
    first_tree = read_tree(project / "dist")
    second = make_orchestrator(project).build()
    assert {p: a.digest for p, a in first.snapshot.artifacts.items()} == {
        p: a.digest for p, a in second.snapshot.artifacts.items()
    }
    assert read_tree(project / "dist") == first_tree


def test_unchanged_rebuild_reuses_everything(project):
    orchestrator = make_orchestrator(project)
    first = orchestrator.build()
    second = orchestrator.build()
    assert second.rendered == []
    assert set(second.skipped) == set(first.rendered)
    assert second.revision == 2
    assert second.snapshot.artifacts == first.snapshot.artifacts
    assert all(node.state is NodeState.FRESH for node in orchestrator.graph)


def test_editing_one_post_rerenders_it_and_aggregates_only(project):
    orchestrator = make_orchestrator(project)
    first = orchestrator.build()
    post_b = first.snapshot.get("posts/b/index.html")

    (project / "posts" / "a.md").write_text(
        "---\ntitle: Post A\nslug: a\ndate: 2024-01-01\ntags: [python, notes]\n---\n\nEdited body.\n",
        encoding="utf-8",
    )
    second = orchestrator.build()
    assert set(second.rendered) == {
        "post:a",
        "index",
        "archive",
        "tags",
        "tag:notes",
        "tag:python",
        "feed",
    }
    assert "post:b" in second.skipped
    assert "page:about" in second.skipped
    assert second.snapshot.get("posts/b/index.html") == post_b
    assert b"Edited body." in second.snapshot.get("posts/a/index.html").data
    assert b"Edited body." in second.snapshot.get("feed.xml").data


def test_template_change_rerenders_dependents(project):
    orchestrator = make_orchestrator(project)
    orchestrator.build()
    templates = project / "templates"
    templates.mkdir()
    (templates / "page.html").write_text("<h1>{{ page.title }}</h1>{{ page.content }}", encoding="utf-8")
    result = orchestrator.build()
    assert "page:about" in result.rendered
    assert "post:a" not in result.rendered and "post:b" not in result.rendered
    assert "index" in result.rendered
    assert result.snapshot.get("about/index.html").data.startswith(b"<h1>About</h1>")


def test_asset_change_copies_only_that_file(project):
    orchestrator = make_orchestrator(project)
    orchestrator.build()
    (project / "assets" / "styles.css").write_text("body { color: red; }\n", encoding="utf-8")
    result = orchestrator.build()
    assert result.rendered == ["file:assets/styles.css"]
    assert result.snapshot.get("assets/styles.css").data == b"body { color: red; }\n"


def test_removed_post_disappears_from_output(project):
    orchestrator = make_orchestrator(project)
    orchestrator.build()
    (project / "posts" / "a.md").unlink()
    result = orchestrator.build()
    assert "posts/a/index.html" not in result.snapshot
    assert "tags/notes/index.html" not in result.snapshot
    assert "index" in result.rendered
    assert not (project / "dist" / "posts" / "a").exists()
    assert orchestrator.graph.get("post:a") is None


def test_colocated_images_are_published(project):
    (project / "posts" / "cat.png").write_bytes(b"\x89PNG fake")
    (project / "posts" / "c.md").write_text(
        "---\ntitle: Cat\ndate: 2024-05-01\n---\n\n![A cat](cat.png)\n", encoding="utf-8"
    )
    result = build_site(project)
    assert result.snapshot.get("img/cat.png").data == b"\x89PNG fake"
    assert b'src="/img/cat.png"' in result.snapshot.get("posts/cat/index.html").data


def test_table_of_contents_is_opt_in(project):
    (project / "posts" / "toc.md").write_text(
        "---\ntitle: Guide\ndate: 2024-04-01\ntable_of_contents: true\n---\n\n## Setup\n\n## Setup\n",
        encoding="utf-8",
    )
    result = build_site(project)
    html = result.snapshot.get("posts/guide/index.html").data.decode("utf-8")
    assert '<nav class="toc">' in html
    assert '<a href="#setup-1">Setup</a>' in html
    assert '<nav class="toc">' not in result.snapshot.get("posts/a/index.html").data.decode("utf-8")


def test_rss_can_be_disabled(project):
    config_path = project / "pageturtle.yaml"
    config_path.write_text(config_path.read_text(encoding="utf-8") + "enable_rss: false\n", encoding="utf-8")
    result = build_site(project)
    assert "feed.xml" not in result.snapshot
    assert b"application/rss+xml" not in result.snapshot.get("index.html").data


def test_duplicate_slug_fails_and_keeps_output(project, add_post):
    build_site(project)
    before = read_tree(project / "dist")
    add_post(project, "z-copy.md", "Copy", "2024-06-01", slug="a")
    with pytest.raises(BuildError) as exc_info:
        build_site(project)
    error = exc_info.value
    assert error.source.endswith("z-copy.md")
    assert "a.md" in error.message
    assert read_tree(project / "dist") == before


def test_parse_error_names_file_and_leaves_state_untouched(project):
    orchestrator = make_orchestrator(project)
    first = orchestrator.build()
    before = read_tree(project / "dist")
    (project / "posts" / "b.md").write_text(
        "---\ntitle: Post B\nslug: b\ndate: 2024-02-01\n---\n\n```python\nunterminated\n", encoding="utf-8"
    )
    with pytest.raises(BuildError) as exc_info:
        orchestrator.build()
    assert exc_info.value.source == "posts/b.md"
    assert "line 2" in exc_info.value.message
    assert orchestrator.snapshot is first.snapshot
    assert orchestrator.revision == 1
    assert read_tree(project / "dist") == before
    assert not (project / ".dist.staging").exists()

    (project / "posts" / "b.md").write_text(
        "---\ntitle: Post B\nslug: b\ndate: 2024-02-01\n---\n\n```python\nfixed\n```\n", encoding="utf-8"
    )
    fixed = orchestrator.build()
    assert fixed.revision == 2
    assert "post:b" in fixed.rendered


def test_missing_template_variable_names_template(project):
    templates = project / "templates"
    templates.mkdir()
    (templates / "post.html").write_text("{{ post.subtitle }}", encoding="utf-8")
    with pytest.raises(BuildError) as exc_info:
        build_site(project)
    assert exc_info.value.source == "post.html"
    assert "undefined variable 'subtitle'" in exc_info.value.message
    assert "posts/a.md" in exc_info.value.message
    assert not (project / "dist").exists()


def test_config_error_becomes_build_error(tmp_path):
    with pytest.raises(BuildError) as exc_info:
        build_site(tmp_path)
    assert exc_info.value.source.endswith("pageturtle.yaml")


@pytest.mark.parametrize("output_dir", [".", "posts"])
def test_output_dir_over_sources_is_rejected_before_building(project, output_dir):
    config_path = project / "pageturtle.yaml"
    config_path.write_text(
        config_path.read_text(encoding="utf-8") + f"output_dir: '{output_dir}'\n", encoding="utf-8"
    )
    before = read_tree(project)
    with pytest.raises(BuildError) as exc_info:
        build_site(project)
    assert exc_info.value.source.endswith("pageturtle.yaml")
    assert "output_dir" in exc_info.value.message
    assert read_tree(project) == before


def test_publish_failure_midway_keeps_previous_output(project, monkeypatch):
    orchestrator = make_orchestrator(project)
    orchestrator.build()
    before = read_tree(project / "dist")

    original_write = DirectoryPublisher._write
    written = []

    def flaky_write(self, artifact):
        if len(written) == 3:
            raise OutputError(artifact.path, OSError(28, "No space left on device"))
        written.append(artifact.path)
        original_write(self, artifact)

    monkeypatch.setattr(DirectoryPublisher, "_write", flaky_write)
    (project / "posts" / "a.md").write_text(
        "---\ntitle: Post A v2\nslug: a\ndate: 2024-01-01\n---\n\nNew.\n", encoding="utf-8"
    )
    with pytest.raises(BuildError, match="No space left"):
        orchestrator.build()

    assert len(written) == 3
    assert read_tree(project / "dist") == before
    assert not (project / ".dist.staging").exists()
    assert orchestrator.revision == 1


def test_in_memory_orchestrator_does_not_touch_disk(project):
    orchestrator = Orchestrator(load_config(project))
    result = orchestrator.build()
    assert "index.html" in result.snapshot
    assert not (project / "dist").exists()


def test_snapshot_assembly_rejects_conflicts():
    same = OutputArtifact.from_text("img/a.png", "x")
    snapshot = BuildSnapshot.assemble(3, [same, OutputArtifact.from_text("img/a.png", "x")])
    assert len(snapshot) == 1
    assert snapshot.revision == 3
    with pytest.raises(TypeError):
        snapshot.artifacts["new"] = same

    with pytest.raises(ArtifactConflict):
        BuildSnapshot.assemble(1, [same, OutputArtifact.from_text("img/a.png", "y")])


def test_directory_publisher_swaps_whole_tree(tmp_path):
    output = tmp_path / "dist"
    publisher = DirectoryPublisher(output)
    publisher.publish(BuildSnapshot.assemble(1, [OutputArtifact.from_text("old.html", "old")]))
    publisher.publish(BuildSnapshot.assemble(2, [OutputArtifact.from_text("sub/new.html", "new")]))
    assert read_tree(output) == {"sub/new.html": b"new"}
    assert sorted(p.name for p in tmp_path.iterdir()) == ["dist"]

    with pytest.raises(OutputError):
        publisher.publish(BuildSnapshot.assemble(3, [OutputArtifact.from_text("../escape.html", "x")]))
    assert read_tree(output) == {"sub/new.html": b"new"}
    assert not (tmp_path / "escape.html").exists()
