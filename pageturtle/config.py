"""Site configuration for Pageturtle.

Configuration lives in ``pageturtle.yaml`` at the project root. It is parsed with
PyYAML, merged over DEFAULT_CONFIG and validated into an immutable SiteConfig.
Any problem raises ConfigError, which is always fatal before a build starts.

Key objects:
- SiteConfig: Validated configuration values with resolved directories.
- load_config: Read and validate the configuration file of a project.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError

CONFIG_FILENAME = "pageturtle.yaml"

DEFAULT_CONFIG: dict[str, Any] = {
    "description": "",
    "author": "",
    "base_url": "",
    "output_dir": "dist",
    "templates_dir": "templates",
    "posts_dir": "posts",
    "pages_dir": "pages",
    "assets_dir": "assets",
    "port": 4000,
    "ws_port": None,
    "feed_truncate": 0,
    "enable_rss": True,
    "links": [],
    "workers": 0,
    "debounce_ms": 200,
}

_STRING_KEYS = (
    "title",
    "description",
    "author",
    "base_url",
    "output_dir",
    "templates_dir",
    "posts_dir",
    "pages_dir",
    "assets_dir",
)
_INT_KEYS = ("port", "feed_truncate", "workers", "debounce_ms")
_DIRECTORY_KEYS = ("output_dir", "templates_dir", "posts_dir", "pages_dir", "assets_dir")


@dataclass(frozen=True)
class Link:
    """Navigation link shown in the site header."""

    name: str
    href: str


@dataclass(frozen=True)
class SiteConfig:
    """Validated site configuration.

    Attributes:
        project_root: Root directory of the project.
        title: Site title.
        description: Site description used in the feed channel.
        author: Default author name.
        base_url: Absolute URL the site is deployed at (may be empty).
        output_dir: Resolved output directory.
        templates_dir: Resolved project template directory.
        posts_dir: Resolved posts directory.
        pages_dir: Resolved standalone pages directory.
        assets_dir: Resolved assets directory.
        port: Dev server HTTP port.
        ws_port: Dev server live reload websocket port.
        feed_truncate: Feed text truncation length (0 keeps full content).
        enable_rss: Whether feed.xml is generated.
        links: Navigation links.
        workers: Leaf render pool size (0 means CPU count).
        debounce_ms: Watcher debounce window in milliseconds.
    """

    project_root: Path
    title: str
    description: str = ""
    author: str = ""
    base_url: str = ""
    output_dir: Path = Path("dist")
    templates_dir: Path = Path("templates")
    posts_dir: Path = Path("posts")
    pages_dir: Path = Path("pages")
    assets_dir: Path = Path("assets")
    port: int = 4000
    ws_port: int = 4001
    feed_truncate: int = 0
    enable_rss: bool = True
    links: tuple[Link, ...] = field(default_factory=tuple)
    workers: int = 0
    debounce_ms: int = 200

    @property
    def worker_count(self) -> int:
        """Number of threads used to render leaf nodes."""
        return self.workers or os.cpu_count() or 1

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_ms / 1000.0

    def with_ports(self, port: int | None = None, ws_port: int | None = None) -> SiteConfig:
        """Return a copy with dev server ports overridden.

        An overridden HTTP port without an explicit websocket port moves the
        websocket port along with it (``port + 1``).
        """
        http_port = port if port is not None else self.port
        if ws_port is None:
            ws_port = http_port + 1 if port is not None else self.ws_port
        return replace(self, port=http_port, ws_port=ws_port)


def load_config(project_root: Path) -> SiteConfig:
    """Load site configuration from pageturtle.yaml.

    Args:
        project_root: Root directory of the project.

    Returns:
        Validated SiteConfig.

    Raises:
        ConfigError: If the file is missing, unreadable or invalid.
    """
    config_path = project_root / CONFIG_FILENAME
    if not config_path.exists():
        raise ConfigError(f"Missing configuration file {config_path}")
    try:
        with open(config_path, encoding="utf-8") as f:
            loaded = yaml.safe_load(f)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {config_path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"Unable to read {config_path}: {exc}") from exc
    if loaded is None:
        loaded = {}
    if not isinstance(loaded, dict):
        raise ConfigError(f"{config_path} must contain a mapping of options")
    return config_from_mapping(project_root, loaded)


def config_from_mapping(project_root: Path, values: dict[str, Any]) -> SiteConfig:
    """Validate a raw option mapping into a SiteConfig.

    Args:
        project_root: Root directory the relative directories resolve against.
        values: Options as loaded from YAML.

    Returns:
        Validated SiteConfig.

    Raises:
        ConfigError: On unknown keys, missing title, or wrong value types.
    """
    unknown = sorted(set(values) - set(DEFAULT_CONFIG) - {"title"})
    if unknown:
        raise ConfigError(f"Unknown configuration option(s): {', '.join(unknown)}")

    config = DEFAULT_CONFIG.copy()
    config.update(values)

    title = config.get("title")
    if not isinstance(title, str) or not title.strip():
        raise ConfigError("Configuration option 'title' is required")

    for key in _STRING_KEYS:
        if not isinstance(config[key], str):
            raise ConfigError(f"Configuration option '{key}' must be a string")
    for key in _INT_KEYS:
        value = config[key]
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ConfigError(f"Configuration option '{key}' must be a non-negative integer")
    if not isinstance(config["enable_rss"], bool):
        raise ConfigError("Configuration option 'enable_rss' must be true or false")

    ws_port = config["ws_port"]
    if ws_port is None:
        ws_port = config["port"] + 1
    elif isinstance(ws_port, bool) or not isinstance(ws_port, int):
        raise ConfigError("Configuration option 'ws_port' must be an integer")

    directories = {key: project_root / config[key] for key in _DIRECTORY_KEYS}
    _check_output_dir(project_root, directories)

    return SiteConfig(
        project_root=project_root,
        title=title.strip(),
        description=config["description"],
        author=config["author"],
        base_url=config["base_url"].rstrip("/"),
        **directories,
        port=config["port"],
        ws_port=ws_port,
        feed_truncate=config["feed_truncate"],
        enable_rss=config["enable_rss"],
        links=_parse_links(config["links"]),
        workers=config["workers"],
        debounce_ms=config["debounce_ms"],
    )


def _parse_links(raw: Any) -> tuple[Link, ...]:
    if not isinstance(raw, list):
        raise ConfigError("Configuration option 'links' must be a list")
    links = []
    for item in raw:
        if (
            not isinstance(item, dict)
            or not isinstance(item.get("name"), str)
            or not isinstance(item.get("href"), str)
        ):
            raise ConfigError("Each entry in 'links' needs string 'name' and 'href' values")
        links.append(Link(name=item["name"], href=item["href"]))
    return tuple(links)


def _check_output_dir(project_root: Path, directories: dict[str, Path]) -> None:
    """Reject an output directory that would replace project files.

    Publishing swaps the whole output directory, so it must not be the
    project root, contain it, or overlap any source directory.
    """
    output = directories["output_dir"].resolve()
    root = project_root.resolve()
    if output == root or output in root.parents:
        raise ConfigError("Configuration option 'output_dir' must not be or contain the project root")
    for key in _DIRECTORY_KEYS[1:]:
        folder = directories[key].resolve()
        if output == folder or output in folder.parents or folder in output.parents:
            raise ConfigError(f"Configuration option 'output_dir' must not overlap '{key}'")
