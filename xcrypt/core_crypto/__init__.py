# Core Cryptography Module
"""
Cryptographic building blocks for file transforms:
- MD5 key-confirmation tag
- Per-chunk AES-128-CTR with a constant IV
"""

from .key_verifier import KeyVerifier, compute_tag, read_tag, TAG_SIZE
from .chunked_cipher import (
    AES_BLOCK_SIZE, TRANSFER_UNIT, XCRYPT_AES_IV,
    ChunkedCipher, CipherContext, Direction, transform_chunk,
)

__all__ = [
    'KeyVerifier',
    'compute_tag',
    'read_tag',
    'TAG_SIZE',
    'AES_BLOCK_SIZE',
    'TRANSFER_UNIT',
    'XCRYPT_AES_IV',
    'ChunkedCipher',
    'CipherContext',
    'Direction',
    'transform_chunk',
]
