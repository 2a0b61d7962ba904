"""Redis snapshot adapter."""

from __future__ import annotations

import json
from typing import Any

from querykit.adapters.base import Snapshot
from querykit.duration import Duration, parse_duration


class AsyncRedisAdapter:
    """Async Redis snapshot adapter storing JSON documents."""

    def __init__(
        self,
        client: Any,  # redis.asyncio.Redis
        *,
        prefix: str = "querykit",
        ttl: Duration | None = None,
    ) -> None:
        self._client = client
        self._prefix = prefix
        self._ttl = parse_duration(ttl) if ttl is not None else None

    def _snapshot_key(self, key: str) -> str:
        """Generate full Redis key for a snapshot."""
        return f"{self._prefix}:snapshot:{key}"

    async def get(self, key: str) -> Snapshot | None:
        """Get a snapshot by key."""
        data = await self._client.get(self._snapshot_key(key))
        if data is None:
            return None
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        snapshot: Snapshot = json.loads(data)
        return snapshot

    async def set(self, key: str, snapshot: Snapshot) -> None:
        """Store a snapshot, expiring after ``ttl`` when configured."""
        await self._client.set(
            self._snapshot_key(key),
            json.dumps(snapshot),
            px=self._ttl,
        )

    async def delete(self, key: str) -> None:
        """Delete a snapshot."""
        await self._client.delete(self._snapshot_key(key))

    async def clear(self) -> None:
        """Delete all snapshots under this prefix."""
        cursor: int = 0
        pattern = f"{self._prefix}:snapshot:*"
        while True:
            result = await self._client.scan(cursor, match=pattern, count=100)
            cursor = result[0]
            keys = result[1]
            if keys:
                await self._client.delete(*keys)
            if cursor == 0:
                break

    async def disconnect(self) -> None:
        """Close the Redis connection."""
        await self._client.aclose()
