"""Dependency graph for incremental builds.

The graph is a registry of BuildNode records addressed by stable string ids
(``post:<slug>``, ``page:<slug>``, ``file:<rel>``, ``index``, ``feed``, ...).
Aggregate nodes never hold references to leaves; they look leaves up by id,
so the registry is the single owner of every node.

Each node remembers the hash of the inputs it was last rendered from. A build
pass recomputes that hash and re-renders the node only when it changed or the
node is not fresh.

Key classes:
- NodeKind / NodeState: Leaf vs aggregate; stale -> rendering -> fresh.
- BuildNode: One unit of output with its last artifacts.
- BuildGraph: The registry, with copy-on-write semantics for build passes.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING

from .utils import digest_parts

if TYPE_CHECKING:
    from .content import Page, Post
    from .snapshot import OutputArtifact


class NodeKind(str, Enum):
    LEAF = "leaf"
    AGGREGATE = "aggregate"


class NodeState(str, Enum):
    STALE = "stale"
    RENDERING = "rendering"
    FRESH = "fresh"


@dataclass
class BuildNode:
    """A unit in the dependency graph.

    Attributes:
        id: Stable identifier.
        kind: Leaf (one post, page or file) or aggregate (listing, feed).
        source: File or template identity reported when rendering fails.
        inputs_hash: Hash of the inputs the node was last rendered from.
        state: Position in the stale -> rendering -> fresh cycle.
        artifacts: Output produced by the last successful render.
        document: Rendered post or page for content leaves.
    """

    id: str
    kind: NodeKind
    source: str
    inputs_hash: str | None = None
    state: NodeState = NodeState.STALE
    artifacts: tuple[OutputArtifact, ...] = field(default_factory=tuple)
    document: Post | Page | None = None

    @property
    def output_hash(self) -> str | None:
        """Combined digest of the node's artifacts, None before the first render."""
        if self.state is not NodeState.FRESH:
            return None
        return digest_parts(f"{a.path}:{a.digest}" for a in self.artifacts)


class BuildGraph:
    """Registry of build nodes indexed by id."""

    def __init__(self, nodes: dict[str, BuildNode] | None = None):
        self._nodes: dict[str, BuildNode] = nodes or {}

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[BuildNode]:
        """Iterate nodes in id order."""
        for node_id in sorted(self._nodes):
            yield self._nodes[node_id]

    def get(self, node_id: str) -> BuildNode | None:
        return self._nodes.get(node_id)

    def ensure(self, node_id: str, kind: NodeKind, source: str) -> BuildNode:
        """Return the node with ``node_id``, registering a stale one if missing.

        A node whose kind changed (e.g. a page slug reused as a tag) is
        replaced by a fresh stale node.
        """
        node = self._nodes.get(node_id)
        if node is None or node.kind is not kind:
            node = BuildNode(id=node_id, kind=kind, source=source)
            self._nodes[node_id] = node
        else:
            node.source = source
        return node

    def remove_missing(self, keep: set[str]) -> list[str]:
        """Drop every node whose id is not in ``keep``; return the removed ids."""
        removed = sorted(node_id for node_id in self._nodes if node_id not in keep)
        for node_id in removed:
            del self._nodes[node_id]
        return removed

    def needs_render(self, node_id: str, inputs_hash: str) -> bool:
        """Decide whether a node must be (re)rendered for the given inputs."""
        node = self._nodes.get(node_id)
        if node is None:
            return True
        return node.state is not NodeState.FRESH or node.inputs_hash != inputs_hash

    def invalidate(self, kind: NodeKind) -> None:
        """Mark every node of ``kind`` stale."""
        for node in self._nodes.values():
            if node.kind is kind:
                node.state = NodeState.STALE

    def leaves(self) -> list[BuildNode]:
        return [node for node in self if node.kind is NodeKind.LEAF]

    def aggregates(self) -> list[BuildNode]:
        return [node for node in self if node.kind is NodeKind.AGGREGATE]

    def copy(self) -> BuildGraph:
        """Shallow-copy every node so a build pass can mutate states freely.

        Artifacts and documents are immutable and shared between copies.
        """
        return BuildGraph({node_id: replace(node) for node_id, node in self._nodes.items()})
