"""Protocol definitions for Pageturtle.

This module defines the interfaces the build pipeline depends on, so that
tests and alternative implementations can be swapped in without touching the
orchestrator or the dev server.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .renderers import RenderedMarkdown
    from .snapshot import BuildSnapshot


@runtime_checkable
class ContentRenderer(Protocol):
    """Protocol for turning a document body into an HTML fragment."""

    @abstractmethod
    def render(self, body: str, source: str | None = None) -> RenderedMarkdown:
        """Render a body to HTML.

        Args:
            body: Source text without front matter.
            source: Document identity used in error messages.

        Returns:
            Rendered HTML plus the document's headings.
        """
        ...


@runtime_checkable
class Publisher(Protocol):
    """Protocol for making a finished snapshot live.

    Implementations must be all-or-nothing: when ``publish`` raises, whatever
    was live before stays live.
    """

    @abstractmethod
    def publish(self, snapshot: BuildSnapshot) -> None:
        ...

    @abstractmethod
    def discard(self) -> None:
        """Drop any partially published output."""
        ...


@runtime_checkable
class ChangeSink(Protocol):
    """Protocol for receiving changed paths from a file watcher.

    ``put`` must never block the caller.
    """

    @abstractmethod
    def put(self, path: str) -> bool:
        ...
