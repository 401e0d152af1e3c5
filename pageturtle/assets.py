"""Static asset discovery for Pageturtle.

Assets are copied verbatim; there is no minification or image optimisation.
Two kinds of files are published:

- Everything under ``assets_dir`` keeps its relative path below ``assets/``.
- Non-Markdown files stored next to posts or pages (typically images) are
  published flat under ``img/``, matching the image URLs the Markdown renderer
  rewrites to.

Each file becomes one leaf node ``file:<rel>`` whose inputs hash is the digest
of its bytes.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .config import SiteConfig
from .errors import OutputError
from .snapshot import OutputArtifact
from .utils import is_hidden, is_markdown


@dataclass(frozen=True)
class AssetFile:
    """A static file to publish.

    Attributes:
        path: Absolute source path.
        rel: Posix path relative to the project root.
        target: Output path relative to the output root.
    """

    path: Path
    rel: str
    target: str

    @property
    def node_id(self) -> str:
        return f"file:{self.rel}"

    def read(self) -> OutputArtifact:
        """Read the file into an artifact.

        Raises:
            OutputError: If the file cannot be read.
        """
        try:
            data = self.path.read_bytes()
        except OSError as exc:
            raise OutputError(self.path, exc) from exc
        return OutputArtifact.from_bytes(self.target, data)


class AssetPipeline:
    """Finds the static files of a site.

    Attributes:
        config: Site configuration.
    """

    def __init__(self, config: SiteConfig):
        self.config = config

    def discover(self) -> list[AssetFile]:
        """List every asset and co-located image, sorted by project path."""
        files: list[AssetFile] = []
        for path in self._walk(self.config.assets_dir):
            rel = path.relative_to(self.config.assets_dir).as_posix()
            files.append(self._asset(path, f"assets/{rel}"))
        for content_dir in (self.config.posts_dir, self.config.pages_dir):
            for path in self._walk(content_dir):
                if is_markdown(path):
                    continue
                files.append(self._asset(path, f"img/{path.name}"))
        return sorted(files, key=lambda f: f.rel)

    def _asset(self, path: Path, target: str) -> AssetFile:
        try:
            rel = path.relative_to(self.config.project_root).as_posix()
        except ValueError:
            rel = path.as_posix()
        return AssetFile(path=path, rel=rel, target=target)

    def _walk(self, directory: Path) -> list[Path]:
        if not directory.is_dir():
            return []
        return sorted(
            path
            for path in directory.rglob("*")
            if path.is_file() and not is_hidden(path.relative_to(directory))
        )
