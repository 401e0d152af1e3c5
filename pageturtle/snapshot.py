"""Build snapshots and atomic publication.

A BuildSnapshot is the complete, immutable set of artifacts produced by one
successful build pass. The dev server holds a reference to the latest one and
swaps it with a single assignment; the DirectoryPublisher writes a snapshot to
disk through a staging directory so the live output directory only ever holds
one complete build.

Key classes:
- OutputArtifact: Bytes destined for one path in the output tree.
- BuildSnapshot: Revision-numbered, read-only mapping of path to artifact.
- DirectoryPublisher: Staging write followed by a rename swap.
"""

from __future__ import annotations

import os
import shutil
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from types import MappingProxyType

from .errors import OutputError
from .utils import digest_bytes


@dataclass(frozen=True)
class OutputArtifact:
    """Final file content plus its destination.

    Attributes:
        path: Posix path relative to the output root, e.g. ``posts/a/index.html``.
        data: File contents.
        digest: sha256 hex digest of ``data``.
    """

    path: str
    data: bytes
    digest: str

    @classmethod
    def from_bytes(cls, path: str, data: bytes) -> OutputArtifact:
        return cls(path=path, data=data, digest=digest_bytes(data))

    @classmethod
    def from_text(cls, path: str, text: str) -> OutputArtifact:
        return cls.from_bytes(path, text.encode("utf-8"))


class ArtifactConflict(ValueError):
    """Two different artifacts claim the same output path."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"two outputs claim '{path}'")


@dataclass(frozen=True)
class BuildSnapshot:
    """One complete, internally consistent build.

    Attributes:
        revision: Monotonically increasing build number (0 = nothing built yet).
        artifacts: Read-only mapping of output path to artifact.
    """

    revision: int
    artifacts: Mapping[str, OutputArtifact] = field(
        default_factory=lambda: MappingProxyType({})
    )

    @classmethod
    def assemble(cls, revision: int, artifacts: Iterable[OutputArtifact]) -> BuildSnapshot:
        """Collect artifacts into a snapshot.

        Identical artifacts at the same path are merged (e.g. an image shared by
        two posts); different content at the same path is a conflict.

        Raises:
            ArtifactConflict: If two artifacts with different bytes share a path.
        """
        collected: dict[str, OutputArtifact] = {}
        for artifact in artifacts:
            existing = collected.get(artifact.path)
            if existing is not None and existing.digest != artifact.digest:
                raise ArtifactConflict(artifact.path)
            collected[artifact.path] = artifact
        ordered = {path: collected[path] for path in sorted(collected)}
        return cls(revision=revision, artifacts=MappingProxyType(ordered))

    def get(self, path: str) -> OutputArtifact | None:
        return self.artifacts.get(path)

    def __contains__(self, path: str) -> bool:
        return path in self.artifacts

    def __len__(self) -> int:
        return len(self.artifacts)


class DirectoryPublisher:
    """Publishes snapshots to an output directory atomically.

    Artifacts are first written to a hidden sibling staging directory. Only
    when every file is written is the live directory renamed aside and the
    staging directory renamed into its place. If anything fails, the staging
    directory is discarded and the previous output stays live.

    Attributes:
        output_dir: Live output directory.
        staging_dir: Sibling directory receiving the next build.
        backup_dir: Sibling directory holding the previous build during the swap.
    """

    def __init__(self, output_dir: Path):
        self.output_dir = output_dir
        self.staging_dir = output_dir.with_name(f".{output_dir.name}.staging")
        self.backup_dir = output_dir.with_name(f".{output_dir.name}.previous")

    def publish(self, snapshot: BuildSnapshot) -> None:
        """Write a snapshot and swap it into place.

        Raises:
            OutputError: If writing or swapping fails; the live directory is
                left as it was.
        """
        try:
            self._prepare_staging()
            for artifact in snapshot.artifacts.values():
                self._write(artifact)
            self._swap()
        except BaseException:
            self.discard()
            raise

    def discard(self) -> None:
        """Remove any partially written staging directory."""
        shutil.rmtree(self.staging_dir, ignore_errors=True)

    def _prepare_staging(self) -> None:
        try:
            if self.staging_dir.exists():
                shutil.rmtree(self.staging_dir)
            self.staging_dir.mkdir(parents=True)
        except OSError as exc:
            raise OutputError(self.staging_dir, exc) from exc

    def _write(self, artifact: OutputArtifact) -> None:
        relative = PurePosixPath(artifact.path)
        if relative.is_absolute() or ".." in relative.parts:
            raise OutputError(artifact.path, OSError(f"refusing to write outside output: {artifact.path}"))
        target = self.staging_dir.joinpath(*relative.parts)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(artifact.data)
        except OSError as exc:
            raise OutputError(target, exc) from exc

    def _swap(self) -> None:
        try:
            if self.backup_dir.exists():
                shutil.rmtree(self.backup_dir)
            had_output = self.output_dir.exists()
            if had_output:
                os.replace(self.output_dir, self.backup_dir)
            try:
                os.replace(self.staging_dir, self.output_dir)
            except OSError:
                if had_output:
                    os.replace(self.backup_dir, self.output_dir)
                raise
        except OSError as exc:
            raise OutputError(self.output_dir, exc) from exc
        shutil.rmtree(self.backup_dir, ignore_errors=True)
