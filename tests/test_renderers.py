import pytest

from pageturtle.content import Heading
from pageturtle.errors import ParseError
from pageturtle.renderers import (
    AnchorRegistry,
    MarkdownRenderer,
    build_toc_tree,
    check_code_fences,
    render_toc,
    rewrite_image_url,
)


def test_markdown_renders_headings_with_unique_anchors():
    result = MarkdownRenderer().render("# Intro\n\ntext\n\n## Intro\n\n## Hello *World*\n")
    assert '<h1 id="intro">Intro</h1>' in result.html
    assert '<h2 id="intro-1">Intro</h2>' in result.html
    assert '<h2 id="hello-world">Hello <em>World</em></h2>' in result.html
    assert [h.anchor for h in result.headings] == ["intro", "intro-1", "hello-world"]
    assert result.headings[2] == Heading(level=2, text="Hello World", anchor="hello-world")


def test_anchor_registry_skips_taken_suffixes():
    anchors = AnchorRegistry()
    assert [anchors.claim(t) for t in ("Intro", "Intro 1", "Intro", "Intro", "???")] == [
        "intro",
        "intro-1",
        "intro-2",
        "intro-3",
        "section",
    ]


def test_anchors_are_deterministic():
    body = "## Setup\n\n## Setup\n\n## Usage\n"
    first = MarkdownRenderer().render(body)
    second = MarkdownRenderer().render(body)
    assert first == second


def test_markdown_plugins_and_raw_html():
    body = (
        "~~gone~~ and https://example.com\n\n"
        "| a | b |\n|---|---|\n| 1 | 2 |\n\n"
        '<div class="note">kept</div>\n\n'
        "Footnote[^1].\n\n[^1]: The note.\n"
    )
    html = MarkdownRenderer().render(body).html
    assert "<del>gone</del>" in html
    assert '<a href="https://example.com">' in html
    assert "<table>" in html
    assert '<div class="note">kept</div>' in html
    assert "The note." in html


def test_code_blocks_are_escaped_and_tagged():
    html = MarkdownRenderer().render("```python\nif a < b:\n    pass\n```\n").html
    assert '<pre><code class="language-python">if a &lt; b:' in html


def test_relative_images_point_at_img_dir():
    html = MarkdownRenderer().render("![Cat](images/cat.png) ![Remote](https://x.org/a.png)").html
    assert 'src="/img/cat.png"' in html
    assert 'src="https://x.org/a.png"' in html
    assert rewrite_image_url("/static/a.png") == "/static/a.png"
    assert rewrite_image_url("photo.jpg?size=2") == "/img/photo.jpg"
    assert rewrite_image_url("data:image/png;base64,xx") == "data:image/png;base64,xx"


def test_unterminated_fence_reports_line():
    with pytest.raises(ParseError) as exc_info:
        MarkdownRenderer().render("Intro\n\n```python\ncode\n", source="posts/a.md")
    error = exc_info.value
    assert error.line == 3
    assert error.source == "posts/a.md"
    assert "unterminated code fence" in str(error)


def test_fence_rules():
    check_code_fences("````\n```\nstill code\n````\n")
    check_code_fences("~~~\n```\n~~~\n")
    check_code_fences("> ```\n> quoted\n> ```\n")
    check_code_fences("Inline ```code``` is not a fence\n")
    with pytest.raises(ParseError):
        check_code_fences("~~~~\n~~~\n")
    with pytest.raises(ParseError):
        check_code_fences("```\n``` trailing\n")


def test_fences_inside_list_items_close_within_the_item():
    html = MarkdownRenderer().render("- item\n\n- ```python\n  print(1)\n  ```\n\nAfter.\n").html
    assert '<code class="language-python">print(1)' in html
    assert "<p>After.</p>" in html
    check_code_fences("1. ```\n   code\n   ```\n")
    check_code_fences("> - ```\n>   quoted\n>   ```\n")


def test_unterminated_fence_in_list_item_reports_opening_line():
    with pytest.raises(ParseError) as exc_info:
        check_code_fences("Intro\n\n- ```sh\n  echo hi\n", source="posts/a.md")
    assert exc_info.value.line == 3
    assert exc_info.value.source == "posts/a.md"


def test_toc_tree_and_html():
    headings = (
        Heading(1, "Top", "top"),
        Heading(2, "Child", "child"),
        Heading(3, "Grandchild", "grandchild"),
        Heading(2, "Sibling", "sibling"),
        Heading(1, "A & B", "a-b"),
    )
    tree = build_toc_tree(headings)
    assert [entry["anchor"] for entry in tree] == ["top", "a-b"]
    assert [child["anchor"] for child in tree[0]["children"]] == ["child", "sibling"]
    assert tree[0]["children"][0]["children"][0]["title"] == "Grandchild"

    html = render_toc(headings)
    assert html.startswith("<ul><li><a href=\"#top\">Top</a><ul>")
    assert '<a href="#a-b">A &amp; B</a>' in html
    assert html.count("<ul>") == html.count("</ul>") == 3
    assert render_toc(()) == ""
