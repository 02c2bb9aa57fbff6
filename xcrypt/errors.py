"""
Error taxonomy for xcrypt.

Every failure of a transform is surfaced as exactly one of these
exceptions. Each carries an ``errno`` code so the syscall-style entry
point can return ``-errno`` the way the kernel hook does.
"""

import errno as _errno
from typing import Optional


class XcryptError(Exception):
    """Base class for all transform failures."""

    errno = _errno.EINVAL

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        if code is not None:
            self.errno = code


class ValidationError(XcryptError):
    """Malformed request: bad direction, oversized path, undersized key."""

    errno = _errno.EINVAL


class KeyMismatchError(XcryptError):
    """Decrypt-path key-confirmation tag did not match."""

    errno = _errno.EPERM


class SelfTransformError(XcryptError):
    """Source and destination (or staging) resolve to the same file."""

    errno = _errno.EPERM


class StorageIOError(XcryptError):
    """Open/read/write/rename/unlink failure reported by storage."""

    errno = _errno.EIO

    @classmethod
    def wrap(cls, exc: OSError, action: str) -> 'StorageIOError':
        """Build from an OSError, keeping its errno."""
        target = exc.filename if exc.filename is not None else "?"
        return cls(
            f"{action} failed for {target}: {exc.strerror or exc}",
            exc.errno or _errno.EIO,
        )


class CipherError(XcryptError):
    """The cipher or digest primitive reported a failure."""

    errno = _errno.EFAULT


class TransformAbortedError(XcryptError):
    """The caller aborted the transform before it committed."""

    errno = _errno.EINTR


__all__ = [
    'XcryptError',
    'ValidationError',
    'KeyMismatchError',
    'SelfTransformError',
    'StorageIOError',
    'CipherError',
    'TransformAbortedError',
]
