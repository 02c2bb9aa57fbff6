"""
Event Logger Module

Audit trail for file transforms.

Every transform outcome is appended to a hash-chained, in-memory log:
each record stores the SHA-256 of the previous record, so editing or
dropping an entry breaks verify_integrity().

Features:
- Encrypt / decrypt events
- Key mismatch and failure events
- Handler install / remove events
- Privacy-preserving path hashes (SHA-256), never plaintext paths
- JSON export / import
"""

import hashlib
import json
import logging
import os
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List

from ..core_crypto.chunked_cipher import Direction
from ..errors import KeyMismatchError, XcryptError


logger = logging.getLogger(__name__)


# ============================================================================
# Constants
# ============================================================================

EVENT_VERSION = "1.0"
GENESIS_HASH = "0" * 64


# ============================================================================
# Privacy Functions
# ============================================================================

def get_path_hash(path: str) -> str:
    """
    Compute privacy-preserving hash of a file path.

    The absolute path is hashed so that events for the same file can be
    correlated without storing the path itself.

    Args:
        path: File path

    Returns:
        Hex-encoded SHA-256 hash of the absolute path
    """
    absolute = os.path.abspath(os.fsdecode(path))
    return hashlib.sha256(absolute.encode('utf-8', 'surrogateescape')).hexdigest()


def get_path_hash_short(path: str) -> str:
    """First 16 characters of the path hash, for display."""
    return get_path_hash(path)[:16]


# ============================================================================
# Event Types
# ============================================================================

class EventType(Enum):
    """Types of events that can be logged."""

    # Transform events
    FILE_ENCRYPT = "file_encrypt"
    FILE_DECRYPT = "file_decrypt"
    KEY_MISMATCH = "key_mismatch"
    TRANSFORM_FAILED = "transform_failed"

    # Entry point registration
    HANDLER_INSTALLED = "handler_installed"
    HANDLER_REMOVED = "handler_removed"

    # System events
    SYSTEM_START = "system_start"
    SYSTEM_SHUTDOWN = "system_shutdown"


# ============================================================================
# Event Structure
# ============================================================================

@dataclass
class TransformEvent:
    """A single audit record. Paths are hashed."""
    event_type: EventType
    source_hash: str
    timestamp: int
    details: Dict[str, Any] = field(default_factory=dict)
    prev_hash: str = GENESIS_HASH

    def to_record(self) -> str:
        """Serialize to a compact JSON record."""
        return json.dumps({
            'version': EVENT_VERSION,
            'type': self.event_type.value,
            'source': self.source_hash,
            'time': self.timestamp,
            'details': self.details,
            'prev': self.prev_hash,
        }, separators=(',', ':'), sort_keys=True)

    @classmethod
    def from_record(cls, record: str) -> 'TransformEvent':
        data = json.loads(record)
        return cls(
            event_type=EventType(data['type']),
            source_hash=data['source'],
            timestamp=data['time'],
            details=data.get('details', {}),
            prev_hash=data.get('prev', GENESIS_HASH),
        )

    @property
    def record_hash(self) -> str:
        return hashlib.sha256(self.to_record().encode('utf-8')).hexdigest()

    def __str__(self) -> str:
        dt = datetime.fromtimestamp(self.timestamp)
        return (
            f"[{dt.strftime('%Y-%m-%d %H:%M:%S')}] "
            f"{self.event_type.value} | "
            f"file:{self.source_hash[:8]}..."
        )


# ============================================================================
# Event Logger
# ============================================================================

class EventLogger:
    """
    Append-only, hash-chained audit log of transform events.

    Pass an instance as ``event_logger`` to TransformPipeline or to the
    syscall entry point to record every outcome.
    """

    def __init__(self, log_start: bool = True):
        self._events: List[TransformEvent] = []
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[TransformEvent], None]] = []
        if log_start:
            self._log_system_event(EventType.SYSTEM_START)

    def __len__(self) -> int:
        return len(self._events)

    def _log_system_event(self, event_type: EventType, **details) -> TransformEvent:
        details.setdefault('node', 'xcrypt')
        return self._add_event(event_type, "system", details)

    def _add_event(self, event_type: EventType, source_hash: str,
                   details: Dict[str, Any]) -> TransformEvent:
        with self._lock:
            prev_hash = self._events[-1].record_hash if self._events else GENESIS_HASH
            event = TransformEvent(
                event_type=event_type,
                source_hash=source_hash,
                timestamp=int(time.time()),
                details=details,
                prev_hash=prev_hash,
            )
            self._events.append(event)

        for callback in self._callbacks:
            try:
                callback(event)
            except Exception:
                # subscribers never break the audit trail
                logger.exception("event callback %r failed", callback)
        return event

    def add_callback(self, callback: Callable[[TransformEvent], None]) -> None:
        """Add a callback to be notified of new events."""
        self._callbacks.append(callback)

    def remove_callback(self, callback: Callable[[TransformEvent], None]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    # ========================================================================
    # Transform Events
    # ========================================================================

    def log_transform(self, outcome) -> TransformEvent:
        """
        Log a successful transform.

        Args:
            outcome: TransformOutcome returned by the pipeline

        Returns:
            The logged event
        """
        event_type = (EventType.FILE_ENCRYPT if outcome.direction is Direction.ENCRYPT
                      else EventType.FILE_DECRYPT)
        return self._add_event(event_type, get_path_hash(outcome.source_path), {
            'dest': get_path_hash_short(outcome.dest_path),
            'read': outcome.bytes_read,
            'written': outcome.bytes_written,
            'chunks': outcome.chunks,
            'algo': "AES-128-CTR",
        })

    def log_failure(self, request, error: XcryptError) -> TransformEvent:
        """Log a failed transform; wrong keys get their own event type."""
        event_type = (EventType.KEY_MISMATCH if isinstance(error, KeyMismatchError)
                      else EventType.TRANSFORM_FAILED)
        try:
            source_hash = get_path_hash(getattr(request, 'source_path', None))
        except (TypeError, ValueError):
            source_hash = "invalid"
        direction = getattr(request, 'direction', None)
        return self._add_event(event_type, source_hash, {
            'error': type(error).__name__,
            'errno': error.errno,
            'message': str(error),
            'direction': getattr(direction, 'name', str(direction)),
        })

    def log_handler(self, installed: bool, handler_name: str) -> TransformEvent:
        event_type = EventType.HANDLER_INSTALLED if installed else EventType.HANDLER_REMOVED
        return self._log_system_event(event_type, handler=handler_name)

    def shutdown(self) -> TransformEvent:
        return self._log_system_event(EventType.SYSTEM_SHUTDOWN)

    # ========================================================================
    # Retrieval
    # ========================================================================

    def get_all_events(self) -> List[TransformEvent]:
        return list(self._events)

    def get_file_events(self, path: str) -> List[TransformEvent]:
        """Get all events whose source is the given path."""
        path_hash = get_path_hash(path)
        return [e for e in self._events if e.source_hash == path_hash]

    def get_events_by_type(self, event_type: EventType) -> List[TransformEvent]:
        return [e for e in self._events if e.event_type == event_type]

    def get_recent_events(self, count: int = 10) -> List[TransformEvent]:
        return self._events[-count:]

    def verify_integrity(self) -> bool:
        """Check that every record links to the hash of the one before it."""
        prev_hash = GENESIS_HASH
        for event in self._events:
            if event.prev_hash != prev_hash:
                return False
            prev_hash = event.record_hash
        return True

    def export_log(self) -> str:
        """Export the log as a JSON list of records."""
        return json.dumps([e.to_record() for e in self._events])

    @classmethod
    def import_log(cls, json_str: str) -> 'EventLogger':
        """Rebuild a logger from export_log() output, records untouched."""
        event_logger = cls(log_start=False)
        event_logger._events = [TransformEvent.from_record(r) for r in json.loads(json_str)]
        return event_logger


# ============================================================================
# Convenience Functions
# ============================================================================

def create_event_logger() -> EventLogger:
    """Create a new event logger."""
    return EventLogger()
