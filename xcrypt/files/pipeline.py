"""
File Transform Pipeline

Encrypts or decrypts one whole file and installs the result
atomically.

State machine:
    IDLE -> VALIDATING -> PREPARING_KEY_TAG -> STREAMING -> COMMITTING -> DONE
    any non-terminal state -> FAILED

Resources are acquired in the order
    source handle -> read buffer -> write buffer -> staging artifact
and released in reverse order on every exit path. A failure rolls the
staging artifact back, so the destination is either fully replaced or
left exactly as it was.

File Format:
    [key tag (16) | AES-CTR payload, same length as the plaintext]

Example:
    >>> encrypt_file("notes.txt", "notes.enc", b"thisisasecretkey12345")
    >>> decrypt_file("notes.enc", "notes.txt", b"thisisasecretkey12345")
"""

import logging
import os
import threading
from contextlib import ExitStack
from dataclasses import dataclass, field
from enum import Enum
from typing import BinaryIO, Callable, List, Optional, Tuple, Union

from ..core_crypto.chunked_cipher import (
    AES_BLOCK_SIZE, TRANSFER_UNIT, ChunkedCipher, CipherContext, Direction,
)
from ..core_crypto.key_verifier import TAG_SIZE, KeyVerifier
from ..errors import (
    SelfTransformError, TransformAbortedError, ValidationError, XcryptError,
)
from .atomic_commit import AtomicFileCommit, StagingArtifact
from .storage import Storage


logger = logging.getLogger(__name__)

# Constants
PATH_MAX = 4096
MIN_KEY_SIZE = AES_BLOCK_SIZE

KeyLike = Union[bytes, bytearray, str]


class PipelineState(Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    PREPARING_KEY_TAG = "preparing_key_tag"
    STREAMING = "streaming"
    COMMITTING = "committing"
    DONE = "done"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (PipelineState.DONE, PipelineState.FAILED)


@dataclass(frozen=True)
class TransformRequest:
    """A sanitized request for one transform. Immutable."""
    source_path: str
    dest_path: str
    key_bytes: bytes = field(repr=False)
    direction: Direction

    def validate(self) -> Direction:
        """
        Check the request invariants.

        Returns:
            The direction as a Direction member

        Raises:
            ValidationError: Bad direction, key or path
        """
        try:
            direction = Direction(self.direction)
        except ValueError:
            raise ValidationError(f"Invalid direction: {self.direction!r}") from None

        if not isinstance(self.key_bytes, (bytes, bytearray)):
            raise ValidationError("Key must be bytes")
        if len(self.key_bytes) < MIN_KEY_SIZE:
            raise ValidationError(
                f"Key must be at least {MIN_KEY_SIZE} bytes, got {len(self.key_bytes)}"
            )

        for label, path in (("source", self.source_path), ("destination", self.dest_path)):
            try:
                path = os.fspath(path)
            except TypeError:
                raise ValidationError(f"Invalid {label} path: {path!r}") from None
            if not isinstance(path, str) or not path:
                raise ValidationError(f"Invalid {label} path: {path!r}")
            if len(os.fsencode(path)) > PATH_MAX:
                raise ValidationError(f"{label.capitalize()} path exceeds {PATH_MAX} bytes")
        return direction


@dataclass(frozen=True)
class TransformOutcome:
    """Summary of a successful transform."""
    direction: Direction
    source_path: str
    dest_path: str
    bytes_read: int
    bytes_written: int
    chunks: int


def _zero(buffer: bytearray) -> None:
    buffer[:] = bytes(len(buffer))


class TransformPipeline:
    """
    Single-use pipeline for one TransformRequest.

    Attributes:
        history: States entered, in order
        resource_trace: ("acquire" | "release", name) pairs, in order
    """

    def __init__(
        self,
        request: TransformRequest,
        storage: Optional[Storage] = None,
        transfer_unit: int = TRANSFER_UNIT,
        event_logger=None,
    ):
        if transfer_unit <= 0:
            raise ValueError("transfer_unit must be positive")
        self._request = request
        self._storage = storage or Storage()
        self._transfer_unit = transfer_unit
        self._event_logger = event_logger
        self._state = PipelineState.IDLE
        self._committed = False
        self._abort = threading.Event()
        self.history: List[PipelineState] = [PipelineState.IDLE]
        self.resource_trace: List[Tuple[str, str]] = []

    @property
    def request(self) -> TransformRequest:
        return self._request

    @property
    def state(self) -> PipelineState:
        return self._state

    def abort(self) -> None:
        """Ask a running pipeline to stop; it fails at the next checkpoint."""
        self._abort.set()

    @property
    def aborted(self) -> bool:
        return self._abort.is_set()

    # ------------------------------------------------------------------
    # Public entry
    # ------------------------------------------------------------------

    def run(self) -> TransformOutcome:
        """
        Execute the transform.

        Returns:
            TransformOutcome on success

        Raises:
            XcryptError: Exactly one error kind; the destination is
                unchanged and no staging file remains
            RuntimeError: If the pipeline was already run
        """
        if self._state is not PipelineState.IDLE:
            raise RuntimeError("TransformPipeline is single-use; create a new one")

        try:
            with ExitStack() as stack:
                try:
                    outcome = self._execute(stack)
                except BaseException:
                    self._enter(PipelineState.FAILED)
                    raise
        except XcryptError as exc:
            if self._state is not PipelineState.FAILED:
                self._enter(PipelineState.FAILED)
            logger.warning("%s %s failed: %s",
                           self._describe_direction(), self._request.source_path, exc)
            if self._event_logger is not None:
                self._event_logger.log_failure(self._request, exc)
            raise

        self._enter(PipelineState.DONE)
        logger.info("%sed %s -> %s (%d bytes)", outcome.direction.verb,
                    outcome.source_path, outcome.dest_path, outcome.bytes_written)
        if self._event_logger is not None:
            self._event_logger.log_transform(outcome)
        return outcome

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _execute(self, stack: ExitStack) -> TransformOutcome:
        self._enter(PipelineState.VALIDATING)
        direction = self._request.validate()
        source_path = os.fspath(self._request.source_path)
        dest_path = os.fspath(self._request.dest_path)

        self._storage.check_destination(dest_path)
        if self._storage.same_file(source_path, dest_path):
            raise SelfTransformError(f"{source_path} and {dest_path} are the same file")

        verifier = KeyVerifier(self._request.key_bytes)
        cipher = ChunkedCipher(CipherContext(bytes(self._request.key_bytes), direction=direction))

        source = self._acquire(stack, "source", self._storage.open_source(source_path),
                               self._storage.close)
        read_buf = self._acquire(stack, "read_buffer", bytearray(self._transfer_unit), _zero)
        write_buf = self._acquire(stack, "write_buffer", bytearray(self._transfer_unit), _zero)
        committer = AtomicFileCommit(self._storage)
        bytes_read = 0

        self._enter(PipelineState.PREPARING_KEY_TAG)
        mode = self._storage.handle_mode(source)
        if direction is Direction.ENCRYPT:
            artifact = self._begin_staging(stack, committer, dest_path, mode)
            committer.append(artifact, verifier.tag)
        else:
            preamble = self._read_preamble(source)
            bytes_read += len(preamble)
            verifier.verify(preamble)
            artifact = self._begin_staging(stack, committer, dest_path, mode)

        self._enter(PipelineState.STREAMING)
        while True:
            self._check_abort()
            count = self._storage.readinto(source, read_buf)
            if count == 0:
                break
            bytes_read += count
            write_buf[:count] = cipher.transform(read_buf[:count])
            committer.append(artifact, write_buf[:count])

        self._enter(PipelineState.COMMITTING)
        staging_id = self._storage.handle_identity(artifact.handle)
        if staging_id == self._storage.handle_identity(source):
            raise SelfTransformError(f"Staging file {artifact.path} is the source")
        if self._storage.same_file(source_path, dest_path):
            raise SelfTransformError(f"{source_path} and {dest_path} are the same file")
        committer.commit(artifact, dest_path)
        self._committed = True

        return TransformOutcome(
            direction=direction,
            source_path=source_path,
            dest_path=dest_path,
            bytes_read=bytes_read,
            bytes_written=artifact.bytes_written,
            chunks=cipher.chunks,
        )

    def _read_preamble(self, source: BinaryIO) -> bytes:
        chunks = []
        remaining = TAG_SIZE
        while remaining > 0:
            piece = self._storage.read(source, remaining)
            if not piece:
                break
            chunks.append(piece)
            remaining -= len(piece)
        return b"".join(chunks)

    # ------------------------------------------------------------------
    # Resource bookkeeping
    # ------------------------------------------------------------------

    def _acquire(self, stack: ExitStack, name: str, resource, release: Callable):
        self.resource_trace.append(("acquire", name))

        def _exit(exc_type, exc, tb) -> bool:
            self.resource_trace.append(("release", name))
            try:
                release(resource)
            except XcryptError:
                # keep the originating error when already unwinding, and
                # never fail a run whose output is already installed
                if exc is None and not self._committed:
                    raise
                logger.warning("releasing %s failed", name, exc_info=True)
            return False

        stack.push(_exit)
        return resource

    def _begin_staging(self, stack: ExitStack, committer: AtomicFileCommit,
                       dest_path: str, mode: int) -> StagingArtifact:
        artifact = committer.begin(dest_path, mode)
        return self._acquire(stack, "staging", artifact, committer.rollback)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def _enter(self, state: PipelineState) -> None:
        if not state.terminal:
            self._check_abort()
        logger.debug("pipeline %s -> %s", self._state.value, state.value)
        self._state = state
        self.history.append(state)

    def _check_abort(self) -> None:
        if self._abort.is_set() and self._state is not PipelineState.FAILED:
            raise TransformAbortedError("Transform aborted by caller")

    def _describe_direction(self) -> str:
        try:
            return Direction(self._request.direction).verb
        except ValueError:
            return "transform"


def _as_key(key: KeyLike) -> bytes:
    if isinstance(key, str):
        return key.encode('utf-8')
    return key


def transform_file(source_path: str, dest_path: str, key: KeyLike,
                   direction: Direction, **kwargs) -> TransformOutcome:
    """Run one pipeline; kwargs go to TransformPipeline."""
    request = TransformRequest(
        source_path=source_path,
        dest_path=dest_path,
        key_bytes=_as_key(key),
        direction=direction,
    )
    return TransformPipeline(request, **kwargs).run()


def encrypt_file(source_path: str, dest_path: str, key: KeyLike, **kwargs) -> TransformOutcome:
    """Convenience function for file encryption."""
    return transform_file(source_path, dest_path, key, Direction.ENCRYPT, **kwargs)


def decrypt_file(source_path: str, dest_path: str, key: KeyLike, **kwargs) -> TransformOutcome:
    """Convenience function for file decryption."""
    return transform_file(source_path, dest_path, key, Direction.DECRYPT, **kwargs)
