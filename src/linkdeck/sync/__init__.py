"""Ordered-collection synchronization core."""

from .ordering import (
    Group,
    Link,
    OrderingError,
    changed_positions,
    check_contiguous,
    is_contiguous,
    move,
    renumber,
    reorder,
    unsaved_positions,
)
from .session import (
    FileStore,
    MemoryStore,
    SessionCoordinator,
    SessionState,
    StorageEvent,
)
from .snapshot import Snapshot, SnapshotIntegrityError

__all__ = [
    "FileStore",
    "Group",
    "Link",
    "MemoryStore",
    "OrderingError",
    "SessionCoordinator",
    "SessionState",
    "Snapshot",
    "SnapshotIntegrityError",
    "StorageEvent",
    "changed_positions",
    "check_contiguous",
    "is_contiguous",
    "move",
    "renumber",
    "reorder",
    "unsaved_positions",
]
