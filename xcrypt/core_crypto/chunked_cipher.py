"""
Chunked AES-CTR Module

Applies AES-128 in CTR mode to successive buffers of a file.

Compatibility notes:
- Only the first AES_BLOCK_SIZE bytes of the key are used as the AES key.
- The counter block is reset to XCRYPT_AES_IV before EVERY chunk. Files
  written by earlier releases depend on this, so encryption and
  decryption only invert each other when both apply the same reset.

WARNING: restarting the keystream per chunk reuses keystream across
chunks and files. Do not change it without deciding to break the
on-disk format.
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import BinaryIO, Generator

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from ..errors import CipherError


# Constants
AES_BLOCK_SIZE = 16             # 128-bit block, also the AES key length used
XCRYPT_AES_IV = b"cephsageyudagreg"
TRANSFER_UNIT = 4096            # one page per read/transform/write cycle


class Direction(IntEnum):
    """Transform direction; values are the request flag on the wire."""
    DECRYPT = 0
    ENCRYPT = 1

    @property
    def verb(self) -> str:
        return "encrypt" if self is Direction.ENCRYPT else "decrypt"


@dataclass(frozen=True)
class CipherContext:
    """Key, IV and direction for one transform run."""
    key_bytes: bytes
    initialization_vector: bytes = XCRYPT_AES_IV
    direction: Direction = Direction.ENCRYPT

    @classmethod
    def for_request(cls, request) -> 'CipherContext':
        """Build the context for a TransformRequest."""
        return cls(key_bytes=request.key_bytes, direction=request.direction)

    @property
    def cipher_key(self) -> bytes:
        """The AES key actually used (first block of the key bytes)."""
        return bytes(self.key_bytes[:AES_BLOCK_SIZE])


def transform_chunk(context: CipherContext, input_buffer: bytes) -> bytes:
    """
    Encrypt or decrypt one buffer.

    The IV is reset to the context's constant on every call.

    Args:
        context: Cipher context
        input_buffer: Plaintext or ciphertext

    Returns:
        Output of exactly len(input_buffer) bytes

    Raises:
        CipherError: If the primitive rejects the key or IV
    """
    try:
        cipher = Cipher(
            algorithms.AES(context.cipher_key),
            modes.CTR(bytes(context.initialization_vector)),
        )
        if context.direction is Direction.ENCRYPT:
            transformer = cipher.encryptor()
        else:
            transformer = cipher.decryptor()
        output = transformer.update(bytes(input_buffer)) + transformer.finalize()
    except (UnsupportedAlgorithm, TypeError, ValueError) as exc:
        raise CipherError(f"AES-CTR {context.direction.verb} failed: {exc}") from exc

    if len(output) != len(input_buffer):
        raise CipherError(
            f"Cipher output length {len(output)} != input length {len(input_buffer)}"
        )
    return output


class ChunkedCipher:
    """
    Stateless-per-chunk AES-CTR transformer with a chunk counter.

    Example:
        >>> cipher = ChunkedCipher(CipherContext(b"0123456789abcdef"))
        >>> out = cipher.transform(b"hello")
    """

    def __init__(self, context: CipherContext):
        self._context = context
        self._chunks = 0

    @property
    def context(self) -> CipherContext:
        return self._context

    @property
    def chunks(self) -> int:
        """Number of chunks transformed so far."""
        return self._chunks

    def transform(self, buffer: bytes) -> bytes:
        output = transform_chunk(self._context, buffer)
        self._chunks += 1
        return output

    def transform_stream(self, stream: BinaryIO,
                         transfer_unit: int = TRANSFER_UNIT) -> Generator[bytes, None, None]:
        """
        Transform a stream chunk by chunk.

        Chunk boundaries matter: output is only compatible with files
        produced using the same transfer unit.

        Yields:
            Transformed chunks
        """
        while True:
            chunk = stream.read(transfer_unit)
            if not chunk:
                break
            yield self.transform(chunk)
