"""Snapshot storage adapters for querykit (async only)."""

from querykit.adapters.base import AsyncSnapshotAdapter, Snapshot
from querykit.adapters.memory import AsyncMemoryAdapter
from querykit.adapters.redis import AsyncRedisAdapter

__all__ = [
    "AsyncMemoryAdapter",
    "AsyncRedisAdapter",
    "AsyncSnapshotAdapter",
    "Snapshot",
]
