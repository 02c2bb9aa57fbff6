# xcrypt
"""
Atomic whole-file encryption and decryption.

Modules:
  - core_crypto: key-confirmation tag, per-chunk AES-CTR
  - files: storage, atomic commit, transform pipeline
  - integration: syscall-style entry point, audit event log
"""

__version__ = "1.0.0"

from .core_crypto.chunked_cipher import Direction
from .errors import (
    XcryptError, ValidationError, KeyMismatchError, SelfTransformError,
    StorageIOError, CipherError, TransformAbortedError,
)
from .files.pipeline import (
    TransformPipeline, TransformRequest, TransformOutcome,
    transform_file, encrypt_file, decrypt_file,
)

__all__ = [
    'Direction',
    'XcryptError',
    'ValidationError',
    'KeyMismatchError',
    'SelfTransformError',
    'StorageIOError',
    'CipherError',
    'TransformAbortedError',
    'TransformPipeline',
    'TransformRequest',
    'TransformOutcome',
    'transform_file',
    'encrypt_file',
    'decrypt_file',
]
