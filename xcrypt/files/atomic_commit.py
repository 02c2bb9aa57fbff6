"""
Atomic Commit Module

Stage-then-commit installation of a transformed file.

Output is written to a hidden staging file in the destination's
directory and promoted with a single rename, so the destination path
only ever shows the old content or the complete new content. A
symlinked destination is resolved first: the file it points to is
replaced and the link is kept.

Contract:
- after commit() returns, the destination holds exactly the staged
  bytes and the staging path no longer exists
- after rollback(), the staging file is gone and the destination is
  untouched
- an artifact is committed or rolled back, never both
"""

import errno
import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import BinaryIO, Optional

from ..errors import SelfTransformError, StorageIOError
from .storage import Storage


logger = logging.getLogger(__name__)


class ArtifactState(Enum):
    OPEN = "open"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


@dataclass
class StagingArtifact:
    """Write handle to a not-yet-visible output file."""
    path: str
    destination_path: str
    handle: BinaryIO
    bytes_written: int = 0
    state: ArtifactState = ArtifactState.OPEN

    @property
    def is_open(self) -> bool:
        return self.state is ArtifactState.OPEN


class AtomicFileCommit:
    """
    Owns at most one staging artifact at a time.

    Can be used as a context manager: leaving the block without a
    successful commit rolls the artifact back.

    Example:
        >>> with AtomicFileCommit() as committer:
        ...     artifact = committer.begin("out.bin")
        ...     committer.append(artifact, b"data")
        ...     committer.commit(artifact, "out.bin")
    """

    def __init__(self, storage: Optional[Storage] = None):
        self._storage = storage or Storage()
        self._artifact: Optional[StagingArtifact] = None

    @property
    def artifact(self) -> Optional[StagingArtifact]:
        return self._artifact

    def begin(self, destination_path: str, mode: Optional[int] = None) -> StagingArtifact:
        """
        Create the staging file next to the destination.

        Args:
            destination_path: Final path of the output
            mode: Permission bits for the output (defaults to 0600)
        """
        if self._artifact is not None and self._artifact.is_open:
            raise RuntimeError("A staging artifact is already open")
        target = os.path.realpath(destination_path)
        handle, path = self._storage.create_staging(target, mode)
        self._artifact = StagingArtifact(path=path, destination_path=target, handle=handle)
        logger.debug("staging %s for %s", path, destination_path)
        return self._artifact

    def append(self, artifact: StagingArtifact, data: bytes) -> int:
        """
        Write data at the end of the staging file.

        Raises:
            StorageIOError: On failed or short writes
        """
        if not artifact.is_open:
            raise RuntimeError(f"Staging artifact is {artifact.state.value}")
        expected = len(data)
        written = self._storage.write(artifact.handle, data)
        if written != expected:
            raise StorageIOError(
                f"Short write to {artifact.path}: {written} of {expected} bytes",
                errno.EIO,
            )
        artifact.bytes_written += written
        return written

    def commit(self, artifact: StagingArtifact, destination_path: str) -> None:
        """
        Promote the staging file to destination_path.

        Raises:
            SelfTransformError: Staging and destination are the same file
            StorageIOError: Sync, close or rename failed
        """
        if not artifact.is_open:
            raise RuntimeError(f"Staging artifact is {artifact.state.value}")

        target = os.path.realpath(destination_path)
        staging_id = self._storage.handle_identity(artifact.handle)
        if self._storage.identity(target) == staging_id:
            raise SelfTransformError(
                f"Staging file {artifact.path} is the destination {destination_path}"
            )

        self._storage.sync(artifact.handle)
        self._storage.close(artifact.handle)
        self._storage.rename(artifact.path, target)
        artifact.state = ArtifactState.COMMITTED
        logger.debug("committed %s -> %s (%d bytes)",
                     artifact.path, target, artifact.bytes_written)

    def rollback(self, artifact: Optional[StagingArtifact] = None) -> None:
        """
        Close and delete the staging file.

        Idempotent; a committed artifact is left alone.
        """
        artifact = artifact or self._artifact
        if artifact is None or not artifact.is_open:
            return
        artifact.state = ArtifactState.ROLLED_BACK
        try:
            self._storage.close(artifact.handle)
        finally:
            removed = self._storage.unlink(artifact.path)
        logger.debug("rolled back %s (removed=%s)", artifact.path, removed)

    def __enter__(self) -> 'AtomicFileCommit':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.rollback()
