"""
Syscall-style entry point.

Receives an untrusted argument block, sanitizes it into a
TransformRequest, runs one pipeline and reports the result as an
integer: 0 on success, -errno on failure.

The entry point is exposed through an explicit hook registry with an
install/remove lifecycle (the module init/exit of a loadable handler).
Nothing in the transform core reads this registry.
"""

import errno
import logging
import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Iterator, Optional, Union

from ..core_crypto.chunked_cipher import AES_BLOCK_SIZE, Direction
from ..errors import ValidationError, XcryptError
from ..files.pipeline import PATH_MAX, TransformPipeline, TransformRequest


logger = logging.getLogger(__name__)

Handler = Callable[..., int]


@dataclass
class XcryptArgs:
    """
    Argument block as handed over by an untrusted caller.

    direction: 0 = decrypt, 1 = encrypt
    """
    key: Optional[bytes] = field(default=None, repr=False)
    key_len: int = 0
    direction: int = 1
    source_path: Optional[Union[str, bytes]] = None
    dest_path: Optional[Union[str, bytes]] = None


def _copy_path(value, label: str) -> str:
    if value is None:
        raise ValidationError(f"Missing {label} path")
    if isinstance(value, bytes):
        if len(value) > PATH_MAX:
            raise ValidationError(f"{label.capitalize()} path exceeds {PATH_MAX} bytes")
        value = os.fsdecode(value)
    if not isinstance(value, str) or not value:
        raise ValidationError(f"Invalid {label} path")
    if "\x00" in value:
        raise ValidationError(f"{label.capitalize()} path contains NUL")
    if len(os.fsencode(value)) > PATH_MAX:
        raise ValidationError(f"{label.capitalize()} path exceeds {PATH_MAX} bytes")
    return value


def copy_request(args: XcryptArgs) -> TransformRequest:
    """
    Validate an argument block and build a sanitized request.

    The key is truncated to key_len and copied, so later changes to
    the caller's buffer do not reach the pipeline.

    Raises:
        ValidationError: Missing or malformed field
    """
    if args is None:
        raise ValidationError("Missing argument block")
    if args.direction not in (Direction.DECRYPT, Direction.ENCRYPT):
        raise ValidationError(f"Invalid direction flag: {args.direction!r}")
    if not isinstance(args.key, (bytes, bytearray)):
        raise ValidationError("Missing key buffer")
    if not isinstance(args.key_len, int) or args.key_len < 0 or args.key_len > len(args.key):
        raise ValidationError(f"Invalid key length: {args.key_len!r}")
    if args.key_len < AES_BLOCK_SIZE:
        raise ValidationError(f"Key must be at least {AES_BLOCK_SIZE} bytes")

    return TransformRequest(
        source_path=_copy_path(args.source_path, "source"),
        dest_path=_copy_path(args.dest_path, "destination"),
        key_bytes=bytes(args.key[:args.key_len]),
        direction=Direction(args.direction),
    )


def xcrypt(args: XcryptArgs, event_logger=None, **pipeline_kwargs) -> int:
    """
    Encrypt or decrypt one file.

    Returns:
        0 on success, -errno on failure
    """
    try:
        request = copy_request(args)
    except ValidationError as exc:
        logger.debug("rejected argument block: %s", exc)
        if event_logger is not None:
            event_logger.log_failure(args, exc)
        return -exc.errno
    try:
        TransformPipeline(request, event_logger=event_logger, **pipeline_kwargs).run()
    except XcryptError as exc:
        logger.debug("xcrypt failed: %s (errno %d)", exc, exc.errno)
        return -exc.errno
    return 0


# ============================================================================
# Hook Registry
# ============================================================================

class HookRegistry:
    """
    Process-wide slot for the installed handler.

    install() keeps an existing handler, like a module init that only
    fills an empty hook.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._handler: Optional[Handler] = None
        self._event_logger = None

    def install(self, handler: Handler = xcrypt, event_logger=None) -> bool:
        """Install handler if the slot is empty. Returns True if installed."""
        with self._lock:
            if self._handler is not None:
                logger.info("handler already installed, keeping %r", self._handler)
                return False
            self._handler = handler
            self._event_logger = event_logger
        logger.info("installed xcrypt handler %s", getattr(handler, '__name__', handler))
        if event_logger is not None:
            event_logger.log_handler(True, getattr(handler, '__name__', repr(handler)))
        return True

    def remove(self) -> bool:
        """Clear the slot. Returns True if a handler was removed."""
        with self._lock:
            handler, self._handler = self._handler, None
            event_logger, self._event_logger = self._event_logger, None
        if handler is None:
            return False
        logger.info("removed xcrypt handler")
        if event_logger is not None:
            event_logger.log_handler(False, getattr(handler, '__name__', repr(handler)))
        return True

    def installed(self) -> bool:
        with self._lock:
            return self._handler is not None

    def dispatch(self, args: XcryptArgs) -> int:
        """Call the installed handler, -ENOSYS if there is none."""
        with self._lock:
            handler = self._handler
            event_logger = self._event_logger
        if handler is None:
            return -errno.ENOSYS
        if event_logger is not None:
            return handler(args, event_logger=event_logger)
        return handler(args)


_registry = HookRegistry()


def install(handler: Handler = xcrypt, event_logger=None) -> bool:
    return _registry.install(handler, event_logger)


def remove() -> bool:
    return _registry.remove()


def installed() -> bool:
    return _registry.installed()


def dispatch(args: XcryptArgs) -> int:
    return _registry.dispatch(args)


@contextmanager
def registered(handler: Handler = xcrypt, event_logger=None) -> Iterator[HookRegistry]:
    """Install for the duration of a block, then remove if we installed it."""
    added = _registry.install(handler, event_logger)
    try:
        yield _registry
    finally:
        if added:
            _registry.remove()
