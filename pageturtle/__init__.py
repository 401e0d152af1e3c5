"""Pageturtle static blog generator.

This package turns a directory of Markdown posts and pages into a static website
with listing pages, an RSS feed and copied assets, using Jinja2 templates.

The main entry point is the CLI module, which provides commands for scaffolding
new projects, building sites, and running the development server with live reload.

Architecture:
- Content loading, Markdown rendering and template rendering are separate modules.
- The build orchestrator tracks a dependency graph so rebuilds only re-render what changed.
- Output is published as immutable snapshots, swapped into place atomically.
"""

__all__ = ["__version__"]
__version__ = "0.2.0"
