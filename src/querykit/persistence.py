"""Snapshot codec and persistence helpers for rehydration.

The snapshot is a JSON-compatible dict. Only settled entries survive
rehydration; in-flight entries are written but dropped by the reducer on
the way back in.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import asdict
from typing import TYPE_CHECKING, Any

from querykit.adapters.base import AsyncSnapshotAdapter, Snapshot
from querykit.exceptions import SerializedError
from querykit.types import (
    Action,
    ApiState,
    ConfigState,
    MutationSubState,
    QueryStatus,
    QuerySubState,
    SubscriptionOptions,
)

if TYPE_CHECKING:
    from querykit.api import Api

_logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1
_ERROR_MARKER = "__serialized_error__"


def _dump_error(error: Any) -> Any:
    if isinstance(error, SerializedError):
        return {_ERROR_MARKER: asdict(error)}
    return error


def _load_error(error: Any) -> Any:
    if isinstance(error, dict) and _ERROR_MARKER in error:
        return SerializedError(**error[_ERROR_MARKER])
    return error


def _dump_substate(substate: QuerySubState | MutationSubState) -> dict[str, Any]:
    dumped = {name: getattr(substate, name) for name in substate.__dataclass_fields__}
    dumped["status"] = substate.status.value
    dumped["error"] = _dump_error(substate.error)
    return dumped


def dump_state(state: ApiState) -> Snapshot:
    """Encode engine state as a JSON-compatible dict."""
    return {
        "version": SNAPSHOT_VERSION,
        "queries": {key: _dump_substate(entry) for key, entry in state.queries.items()},
        "mutations": {key: _dump_substate(entry) for key, entry in state.mutations.items()},
        "provided": {
            tag_type: {bucket: list(keys) for bucket, keys in ids.items()}
            for tag_type, ids in state.provided.items()
        },
        "subscriptions": {
            key: {request_id: asdict(options) for request_id, options in subscribers.items()}
            for key, subscribers in state.subscriptions.items()
        },
        "config": asdict(state.config),
    }


def _load_substate(cls: type[Any], data: Mapping[str, Any]) -> Any:
    fields = {name: data.get(name) for name in cls.__dataclass_fields__ if name in data}
    fields["status"] = QueryStatus(data["status"])
    fields["error"] = _load_error(data.get("error"))
    return cls(**fields)


def load_state(snapshot: Mapping[str, Any]) -> ApiState:
    """Decode a dict produced by ``dump_state``."""
    version = snapshot.get("version")
    if version != SNAPSHOT_VERSION:
        raise ValueError(f"Unsupported snapshot version: {version!r}")
    return ApiState(
        queries={
            key: _load_substate(QuerySubState, entry)
            for key, entry in snapshot.get("queries", {}).items()
        },
        mutations={
            key: _load_substate(MutationSubState, entry)
            for key, entry in snapshot.get("mutations", {}).items()
        },
        provided={
            tag_type: {bucket: tuple(keys) for bucket, keys in ids.items()}
            for tag_type, ids in snapshot.get("provided", {}).items()
        },
        subscriptions={
            key: {
                request_id: SubscriptionOptions(**options)
                for request_id, options in subscribers.items()
            }
            for key, subscribers in snapshot.get("subscriptions", {}).items()
        },
        config=ConfigState(**snapshot.get("config", {})),
    )


async def save_snapshot(
    adapter: AsyncSnapshotAdapter,
    api: Api,
    root_state: Mapping[str, Any],
    *,
    key: str | None = None,
) -> None:
    """Persist the api's part of ``root_state``."""
    state = api.selectors.select_internal_state(root_state)
    if state is None:
        return
    await adapter.set(key or api.reducer_path, dump_state(state))
    _logger.debug("Saved snapshot for %s (%d queries)", api.reducer_path, len(state.queries))


async def restore_snapshot(
    adapter: AsyncSnapshotAdapter,
    api: Api,
    *,
    key: str | None = None,
) -> Action | None:
    """Load a snapshot and return the rehydration action, if one was stored."""
    snapshot = await adapter.get(key or api.reducer_path)
    if snapshot is None:
        return None
    return api.util.rehydrate(load_state(snapshot))


__all__ = ["dump_state", "load_state", "restore_snapshot", "save_snapshot"]
