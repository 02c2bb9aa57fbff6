"""
Storage collaborator.

Thin wrapper over the OS file primitives used by a transform: open,
read, write, sync, rename, unlink, close and identity lookup. Every
OSError is turned into StorageIOError, so callers get either a valid
handle or one specific error, never a half-open handle.

Subclass it to inject faults in tests.
"""

import errno
import logging
import os
import stat
import tempfile
from typing import BinaryIO, Optional, Tuple

from ..errors import StorageIOError


logger = logging.getLogger(__name__)

STAGING_SUFFIX = ".tmp"

FileIdentity = Tuple[int, int]  # (st_dev, st_ino)


def _check_regular(mode: int, path: str) -> None:
    if stat.S_ISDIR(mode):
        raise StorageIOError(f"{path} is a directory", errno.EISDIR)
    if not stat.S_ISREG(mode):
        raise StorageIOError(f"{path} is not a regular file", errno.EPERM)


class Storage:
    """Default storage backed by the local filesystem."""

    def open_source(self, path: str) -> BinaryIO:
        """
        Open a regular file for reading.

        Raises:
            StorageIOError: Missing file, no permission, directory or
                special file
        """
        # O_NONBLOCK keeps a FIFO from blocking the open; regular file
        # reads ignore it
        flags = os.O_RDONLY | getattr(os, "O_NONBLOCK", 0) | getattr(os, "O_BINARY", 0)
        try:
            fd = os.open(path, flags)
        except OSError as exc:
            raise StorageIOError.wrap(exc, "open source") from exc
        try:
            _check_regular(os.fstat(fd).st_mode, path)
            return os.fdopen(fd, 'rb')
        except OSError as exc:
            os.close(fd)
            raise StorageIOError.wrap(exc, "stat source") from exc
        except StorageIOError:
            os.close(fd)
            raise

    def create_staging(self, dest_path: str,
                       mode: Optional[int] = None) -> Tuple[BinaryIO, str]:
        """
        Create an empty staging file next to dest_path.

        Returns:
            (write handle, staging path)
        """
        directory, name = os.path.split(os.path.abspath(dest_path))
        try:
            fd, staging_path = tempfile.mkstemp(
                prefix=f".{name}.", suffix=STAGING_SUFFIX, dir=directory
            )
        except OSError as exc:
            raise StorageIOError.wrap(exc, "create staging file") from exc
        try:
            if mode is not None:
                os.fchmod(fd, stat.S_IMODE(mode))
            handle = os.fdopen(fd, 'wb')
        except OSError as exc:
            os.close(fd)
            self.unlink(staging_path)
            raise StorageIOError.wrap(exc, "open staging file") from exc
        return handle, staging_path

    def read(self, handle: BinaryIO, size: int) -> bytes:
        try:
            return handle.read(size)
        except OSError as exc:
            raise StorageIOError.wrap(exc, "read") from exc

    def readinto(self, handle: BinaryIO, buffer: bytearray) -> int:
        try:
            count = handle.readinto(buffer)
        except OSError as exc:
            raise StorageIOError.wrap(exc, "read") from exc
        return count or 0

    def write(self, handle: BinaryIO, data: bytes) -> int:
        try:
            written = handle.write(data)
        except OSError as exc:
            raise StorageIOError.wrap(exc, "write") from exc
        return len(data) if written is None else written

    def sync(self, handle: BinaryIO) -> None:
        """Flush Python and OS buffers to disk."""
        try:
            handle.flush()
            os.fsync(handle.fileno())
        except OSError as exc:
            raise StorageIOError.wrap(exc, "sync") from exc

    def close(self, handle: BinaryIO) -> None:
        if handle.closed:
            return
        try:
            handle.close()
        except OSError as exc:
            raise StorageIOError.wrap(exc, "close") from exc

    def rename(self, src: str, dst: str) -> None:
        try:
            os.replace(src, dst)
        except OSError as exc:
            raise StorageIOError.wrap(exc, "rename") from exc

    def unlink(self, path: str) -> bool:
        """Remove a file. Returns False if it was already gone."""
        try:
            os.unlink(path)
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise StorageIOError.wrap(exc, "unlink") from exc
        logger.debug("removed %s", path)
        return True

    def identity(self, path: str) -> Optional[FileIdentity]:
        """(device, inode) of the file path resolves to, None if missing."""
        try:
            st = os.stat(path)
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageIOError.wrap(exc, "stat") from exc
        return (st.st_dev, st.st_ino)

    def handle_identity(self, handle: BinaryIO) -> FileIdentity:
        try:
            st = os.fstat(handle.fileno())
        except OSError as exc:
            raise StorageIOError.wrap(exc, "stat") from exc
        return (st.st_dev, st.st_ino)

    def handle_mode(self, handle: BinaryIO) -> int:
        try:
            return os.fstat(handle.fileno()).st_mode
        except OSError as exc:
            raise StorageIOError.wrap(exc, "stat") from exc

    def check_destination(self, path: str) -> None:
        """An existing destination must be a regular file."""
        try:
            st = os.stat(path)
        except FileNotFoundError:
            return
        except OSError as exc:
            raise StorageIOError.wrap(exc, "stat destination") from exc
        _check_regular(st.st_mode, path)

    def same_file(self, first: str, second: str) -> bool:
        """
        True if both paths resolve to one file.

        Existing files are compared by (device, inode), which also
        catches hard links; otherwise the resolved paths are compared.
        """
        first_id = self.identity(first)
        second_id = self.identity(second)
        if first_id is not None and second_id is not None:
            return first_id == second_id
        return os.path.realpath(first) == os.path.realpath(second)
