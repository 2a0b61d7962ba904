"""Base adapter protocol for snapshot storage backends."""

from typing import Any, Protocol, runtime_checkable

Snapshot = dict[str, Any]


@runtime_checkable
class AsyncSnapshotAdapter(Protocol):
    """Async storage for serialized engine state."""

    async def get(self, key: str) -> Snapshot | None:
        """Get a snapshot by key."""
        ...

    async def set(self, key: str, snapshot: Snapshot) -> None:
        """Store a snapshot."""
        ...

    async def delete(self, key: str) -> None:
        """Delete a snapshot."""
        ...

    async def clear(self) -> None:
        """Delete all snapshots."""
        ...

    async def disconnect(self) -> None:
        """Disconnect from the storage backend."""
        ...
