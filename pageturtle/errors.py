"""Error types for Pageturtle.

Every failure the build pipeline reports derives from PageturtleError, so the
CLI and the dev server can catch one type and present a friendly message.

Taxonomy:
- ConfigError: bad or missing configuration (fatal before any build).
- ContentError: unreadable source, malformed front matter, duplicate slug.
- ParseError: structurally invalid Markdown (e.g. unterminated code fence).
- TemplateError: template problems; TemplateNotFound and MissingVariable narrow it.
- OutputError: filesystem failure while reading assets or writing output.
- BuildError: wrapper raised by the orchestrator, carrying the first cause and
  the file or template it originated from.
"""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path


class PageturtleError(Exception):
    """Base class for all Pageturtle errors."""


class ConfigError(PageturtleError):
    """Configuration is missing or invalid."""


class ContentError(PageturtleError):
    """A content source file could not be loaded.

    Attributes:
        path: Path of the offending file.
        message: Human-readable description of the problem.
        related: Other files involved (e.g. the first owner of a duplicate slug).
    """

    def __init__(self, path: Path | str, message: str, related: Iterable[Path | str] = ()):
        self.path = Path(path)
        self.message = message
        self.related = tuple(Path(p) for p in related)
        super().__init__(f"{path}: {message}")

    @property
    def paths(self) -> tuple[Path, ...]:
        """All files involved, offending file first."""
        return (self.path, *self.related)


class ParseError(PageturtleError):
    """Markdown input is structurally invalid.

    Attributes:
        message: Description of the problem.
        line: 1-based line number in the Markdown body, when known.
        source: Identity of the document, when known.
    """

    def __init__(self, message: str, line: int | None = None, source: str | None = None):
        self.message = message
        self.line = line
        self.source = source
        location = f" (line {line})" if line is not None else ""
        prefix = f"{source}: " if source else ""
        super().__init__(f"{prefix}{message}{location}")


class TemplateError(PageturtleError):
    """A template could not be rendered.

    Attributes:
        template_id: Name of the template, e.g. ``post.html``.
        message: Description of the problem.
    """

    def __init__(self, template_id: str, message: str):
        self.template_id = template_id
        self.message = message
        super().__init__(f"{template_id}: {message}")


class TemplateNotFound(TemplateError):
    """The requested template does not exist in any template directory."""

    def __init__(self, template_id: str):
        super().__init__(template_id, f"template '{template_id}' not found")


class MissingVariable(TemplateError):
    """A template referenced a key that is absent from its context.

    Attributes:
        key: The missing key name.
    """

    def __init__(self, template_id: str, key: str):
        self.key = key
        super().__init__(template_id, f"undefined variable '{key}'")


class OutputError(PageturtleError):
    """Filesystem failure while reading build inputs or writing output.

    Attributes:
        path: The path that could not be read or written.
        original_error: The underlying OSError.
    """

    def __init__(self, path: Path | str, original_error: OSError):
        self.path = Path(path)
        self.original_error = original_error
        reason = original_error.strerror or str(original_error)
        super().__init__(f"{path}: {reason}")


class BuildError(PageturtleError):
    """Error during a build pass with file context.

    Attributes:
        source: File or template identity the failure originated from.
        message: Human-readable error message.
        original_error: The original exception that was caught.
    """

    def __init__(
        self,
        source: Path | str,
        message: str,
        original_error: Exception | None = None,
    ):
        self.source = str(source)
        self.message = message
        self.original_error = original_error
        super().__init__(f"{source}: {message}")
