from pathlib import Path

import pytest


def write_post(root: Path, name: str, title: str, date: str, body: str = "Body text.", **extra) -> Path:
    lines = ["---", f"title: {title}", f"date: {date}"]
    for key, value in extra.items():
        lines.append(f"{key}: {value}")
    lines.extend(["---", "", body, ""])
    path = root / "posts" / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines), encoding="utf-8")
    return path


@pytest.fixture
def project(tmp_path):
    """A minimal site: two posts, one page, one stylesheet."""
    root = tmp_path / "site"
    root.mkdir()
    (root / "pageturtle.yaml").write_text(
        "title: Test Blog\n"
        "description: A test blog\n"
        "author: Tess\n"
        "base_url: https://example.com/\n"
        "workers: 2\n",
        encoding="utf-8",
    )
    write_post(root, "a.md", "Post A", "2024-01-01", "First post body.", slug="a", tags="[python, notes]")
    write_post(root, "b.md", "Post B", "2024-02-01", "Second post body.", slug="b", tags="[python]")
    (root / "pages").mkdir()
    (root / "pages" / "about.md").write_text("---\ntitle: About\n---\n\nAbout me.\n", encoding="utf-8")
    (root / "assets").mkdir()
    (root / "assets" / "styles.css").write_text("body { color: black; }\n", encoding="utf-8")
    return root


@pytest.fixture
def add_post():
    return write_post
