"""
Key Confirmation Module

Computes and checks the 16-byte key-confirmation tag stored as the
preamble of every encrypted file.

The tag is the MD5 digest of the raw key bytes, with no salt. It only
tells a decryptor whether it holds the same key that encrypted the
file; it does NOT authenticate the payload that follows it.

File Format:
    [tag (16) | payload ...]
"""

import hmac
import logging
from typing import BinaryIO

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes

from ..errors import CipherError, KeyMismatchError, StorageIOError


logger = logging.getLogger(__name__)

# Constants
TAG_SIZE = 16               # MD5 digest size
TAG_ALGORITHM = hashes.MD5()


def compute_tag(key_bytes: bytes) -> bytes:
    """
    Compute the key-confirmation tag for a key.

    Args:
        key_bytes: Raw key bytes (all of them, not only the cipher key)

    Returns:
        16-byte digest

    Raises:
        CipherError: If the digest primitive is unavailable or fails
    """
    try:
        digest = hashes.Hash(TAG_ALGORITHM)
        digest.update(bytes(key_bytes))
        return digest.finalize()
    except (UnsupportedAlgorithm, TypeError, ValueError) as exc:
        raise CipherError(f"Key digest failed: {exc}") from exc


class KeyVerifier:
    """
    Holds the expected tag for one key and checks preambles against it.

    Example:
        >>> verifier = KeyVerifier(b"thisisasecretkey12345")
        >>> verifier.verify(verifier.tag)
    """

    def __init__(self, key_bytes: bytes):
        self._tag = compute_tag(key_bytes)

    @property
    def tag(self) -> bytes:
        """Tag written as the first bytes of an encrypted file."""
        return self._tag

    def matches(self, preamble: bytes) -> bool:
        """Constant-time comparison of a preamble with the expected tag."""
        if len(preamble) != TAG_SIZE:
            return False
        return hmac.compare_digest(bytes(preamble), self._tag)

    def verify(self, preamble: bytes) -> None:
        """
        Check a preamble read from an encrypted file.

        Raises:
            KeyMismatchError: Short preamble or wrong key
        """
        if len(preamble) != TAG_SIZE:
            raise KeyMismatchError(
                f"Missing key tag: expected {TAG_SIZE} bytes, got {len(preamble)}"
            )
        if not self.matches(preamble):
            logger.debug("key tag mismatch")
            raise KeyMismatchError("Key does not match the one used to encrypt the file")


def read_preamble(stream: BinaryIO) -> bytes:
    """Read up to TAG_SIZE bytes, tolerating short reads from the stream."""
    chunks = []
    remaining = TAG_SIZE
    while remaining > 0:
        piece = stream.read(remaining)
        if not piece:
            break
        chunks.append(piece)
        remaining -= len(piece)
    return b"".join(chunks)


def read_tag(path: str) -> bytes:
    """
    Get the stored key tag of an encrypted file without decrypting it.

    Args:
        path: Path to an encrypted file

    Returns:
        The preamble bytes (shorter than TAG_SIZE if the file is truncated)
    """
    try:
        with open(path, 'rb') as f:
            return read_preamble(f)
    except OSError as exc:
        raise StorageIOError.wrap(exc, "read tag") from exc
