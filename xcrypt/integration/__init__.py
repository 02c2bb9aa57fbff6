# Integration Module
"""
Host integration around the transform core:
- syscall-style entry point with an install/remove hook registry
- hash-chained audit log of transform events
"""

import importlib

_SUBMODULES = ("event_logger", "syscall")


# Lazy imports to avoid RuntimeWarning when running module directly
def __getattr__(name):
    """Lazy import to avoid circular import issues."""
    if name in _SUBMODULES:
        return importlib.import_module(f"{__name__}.{name}")
    for sub in _SUBMODULES:
        module = importlib.import_module(f"{__name__}.{sub}")
        if hasattr(module, name):
            return getattr(module, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

__all__ = [
    'EventType',
    'TransformEvent',
    'EventLogger',
    'get_path_hash',
    'create_event_logger',
    'XcryptArgs',
    'HookRegistry',
    'copy_request',
    'xcrypt',
    'install',
    'remove',
    'installed',
    'dispatch',
    'registered',
]
