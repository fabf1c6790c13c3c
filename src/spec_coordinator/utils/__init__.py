"""Small shared helpers: atomic file I/O and asyncio cancellation primitives."""

from spec_coordinator.utils.concurrency import CancellationToken, sleep_unless_cancelled
from spec_coordinator.utils.fs import (
    atomic_write,
    atomic_write_json,
    is_within,
    looks_like_text,
    prune_older_than,
)

__all__ = [
    "CancellationToken",
    "atomic_write",
    "atomic_write_json",
    "is_within",
    "looks_like_text",
    "prune_older_than",
    "sleep_unless_cancelled",
]
