"""Command-line interface for Pageturtle.

This module defines the CLI commands using the Click framework.

Commands:
- init: Scaffold a new Pageturtle project.
- new: Create a new post interactively.
- build: Build the site into the output directory.
- dev: Run the development server with live reload.
- help: Show usage.
"""

from __future__ import annotations

import os
import shutil
import subprocess
from datetime import date
from pathlib import Path

import click
import questionary
import yaml

from . import __version__
from .utils import slugify

# Starter project copied by ``init``
_SCAFFOLD_DIR = Path(__file__).parent / "scaffold"


@click.group()
@click.version_option(version=__version__, prog_name="pageturtle")
def cli():
    """Pageturtle static blog generator."""


@cli.command()
@click.option(
    "-d",
    "--directory",
    default=".",
    type=click.Path(file_okay=False),
    help="Directory to create the project in (defaults to the current one)",
)
def init(directory: str):
    """Scaffold a new Pageturtle project."""
    target = Path(directory).resolve()
    if target.exists() and any(target.iterdir()):
        raise click.ClickException(
            f"Refusing to initialize into non-empty directory: {target}"
        )
    _scaffold(target)
    click.echo(f"New Pageturtle site created at {target}")


@cli.command()
def new():
    """Create a new post interactively."""
    from .config import load_config
    from .errors import ConfigError

    project_root = Path.cwd()
    try:
        config = load_config(project_root)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    title = questionary.text(
        "Post title:",
        validate=lambda x: bool(slugify(x)) or "Title needs at least one letter or digit",
        style=_questionary_style(),
    ).ask()
    if title is None:
        raise click.Abort()
    title = title.strip()

    tags = questionary.text(
        "Tags (comma separated, optional):",
        style=_questionary_style(),
    ).ask()
    if tags is None:
        raise click.Abort()

    slug = slugify(title)
    target_path = config.posts_dir / f"{slug}.md"
    if target_path.exists():
        raise click.ClickException(
            f"File already exists: {_display_path(target_path, project_root)}"
        )

    target_path.parent.mkdir(parents=True, exist_ok=True)
    target_path.write_text(_post_template(title, tags, date.today()), encoding="utf-8")
    click.echo(f"Created {_display_path(target_path, project_root)}")


@cli.command()
def build():
    """Build the site into the output directory."""
    project_root = Path.cwd()
    from .build import BuildError, build_site

    try:
        result = build_site(project_root)
    except BuildError as exc:
        click.echo(click.style("Build failed:", fg="red", bold=True), err=True)
        click.echo(click.style(f"  File: {_display_path(exc.source, project_root)}", fg="yellow"), err=True)
        click.echo(click.style(f"  Error: {exc.message}", fg="white"), err=True)
        raise SystemExit(1) from None
    click.echo(
        f"Built revision {result.revision}: {len(result.posts)} posts, "
        f"{len(result.snapshot)} files"
    )


@cli.command()
@click.option(
    "--port",
    type=int,
    required=False,
    help="Port to run the dev server (overrides pageturtle.yaml)",
)
@click.option(
    "--ws-port",
    type=int,
    required=False,
    help="Port for the live reload websocket server (overrides pageturtle.yaml ws_port)",
)
def dev(port: int | None, ws_port: int | None):
    """Run dev server with live reload."""
    project_root = Path.cwd()
    from .errors import ConfigError
    from .server import DevServer

    try:
        server = DevServer(project_root, http_port=port, ws_port=ws_port)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    server.start()


@cli.command(name="help")
@click.pass_context
def help_command(ctx: click.Context):
    """Show this message."""
    click.echo(ctx.parent.get_help())


def _post_template(title: str, tags: str, day: date) -> str:
    front_matter = {
        "title": title,
        "date": day.isoformat(),
        "tags": [tag.strip() for tag in tags.split(",") if tag.strip()],
    }
    dumped = yaml.safe_dump(front_matter, sort_keys=False, allow_unicode=True)
    return f"---\n{dumped}---\n\nWrite your post here.\n"


def _display_path(path: Path | str, project_root: Path) -> str:
    try:
        return str(Path(path).relative_to(project_root))
    except ValueError:
        return str(path)


def _questionary_style():
    """Return consistent questionary style."""
    return questionary.Style(
        [
            ("qmark", "fg:green bold"),
            ("question", "bold"),
            ("answer", "fg:green"),
            ("pointer", "fg:green bold"),
            ("highlighted", "fg:green bold"),
            ("selected", "fg:green"),
        ]
    )


def main():
    """Entry point for the CLI application."""
    cli()


def _scaffold(root: Path) -> None:
    """Create the directory structure and files for a new Pageturtle project.

    Args:
        root: Root directory for the new project.
    """
    from .templates import BUILTIN_TEMPLATES_DIR

    for source_dir, dest_dir in ((_SCAFFOLD_DIR, root), (BUILTIN_TEMPLATES_DIR, root / "templates")):
        for src_path in sorted(source_dir.rglob("*")):
            if src_path.is_dir():
                continue
            dest_path = dest_dir / src_path.relative_to(source_dir)
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(src_path, dest_path)

    _try_git_init(root)


def _try_git_init(root: Path) -> None:
    """Initialize a git repository if git is available."""
    if os.environ.get("PAGETURTLE_SKIP_GIT_INIT") == "1":
        return
    git_bin = shutil.which("git")
    if not git_bin:
        return
    try:
        subprocess.run(
            [git_bin, "init"],
            cwd=root,
            check=True,
            capture_output=True,
        )
    except (OSError, subprocess.CalledProcessError):
        click.echo("Skipped git init; run it manually if you want version control.", err=True)
