"""In-memory snapshot adapter (async only)."""

import asyncio
import copy

from querykit.adapters.base import Snapshot


class AsyncMemoryAdapter:
    """Async in-memory snapshot adapter. Snapshots are copied in and out."""

    def __init__(self) -> None:
        self._snapshots: dict[str, Snapshot] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Snapshot | None:
        """Get a snapshot by key."""
        async with self._lock:
            snapshot = self._snapshots.get(key)
            return copy.deepcopy(snapshot) if snapshot is not None else None

    async def set(self, key: str, snapshot: Snapshot) -> None:
        """Store a snapshot."""
        async with self._lock:
            self._snapshots[key] = copy.deepcopy(snapshot)

    async def delete(self, key: str) -> None:
        """Delete a snapshot."""
        async with self._lock:
            self._snapshots.pop(key, None)

    async def clear(self) -> None:
        """Delete all snapshots."""
        async with self._lock:
            self._snapshots.clear()

    async def disconnect(self) -> None:
        """Disconnect from the storage backend (no-op for memory)."""
        pass
