# File Transform Module
"""
Whole-file encryption/decryption with atomic installation:
- MD5 key-confirmation tag as a 16-byte preamble
- Per-chunk AES-128-CTR streaming (one page per chunk)
- Stage-then-rename commit with rollback on any failure

Guarantees:
- The destination never shows partial output
- No staging file survives a failed run
- Every acquired resource is released in reverse order
"""

import importlib

_SUBMODULES = ("pipeline", "atomic_commit", "storage")


# Lazy imports to avoid RuntimeWarning when running module directly
def __getattr__(name):
    """Lazy import to avoid circular import issues when running module directly."""
    if name in _SUBMODULES:
        return importlib.import_module(f"{__name__}.{name}")
    for sub in _SUBMODULES:
        module = importlib.import_module(f"{__name__}.{sub}")
        if hasattr(module, name):
            return getattr(module, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

__all__ = [
    'TransformPipeline',
    'TransformRequest',
    'TransformOutcome',
    'PipelineState',
    'AtomicFileCommit',
    'StagingArtifact',
    'Storage',
    'transform_file',
    'encrypt_file',
    'decrypt_file',
    'PATH_MAX',
]
