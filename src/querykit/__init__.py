"""querykit - Request deduplication, tag invalidation and optimistic updates for Python."""

from contextlib import suppress

# Adapters
from querykit.adapters import AsyncMemoryAdapter, AsyncRedisAdapter, AsyncSnapshotAdapter

# Api
from querykit.api import Api, create_api

# Definitions
from querykit.definitions import EndpointBuilder, MutationDefinition, QueryDefinition

# Duration parsing
from querykit.duration import parse_duration

# Errors
from querykit.exceptions import (
    HandledError,
    QueryError,
    QueryKitError,
    SerializedError,
    UnknownEndpointError,
)
from querykit.initiate import MutationHandle, QueryHandle, subscription_options
from querykit.patches import Patch, apply_patches, produce_with_patches
from querykit.persistence import dump_state, load_state, restore_snapshot, save_snapshot
from querykit.results import Err, Ok
from querykit.selectors import InvalidatedEntry, MutationId

# Store host
from querykit.store import Store, combine_reducers
from querykit.thunks import PatchCollection

# Core types
from querykit.types import (
    SKIP,
    Action,
    ApiState,
    MutationSubState,
    QueryStatus,
    QuerySubState,
    SubscriptionOptions,
    Tag,
)

# Optional HTTP base query - only available when httpx is installed
with suppress(ImportError):
    from querykit.http import fetch_base_query

__version__ = "0.1.0"

__all__ = [
    "SKIP",
    "Action",
    "Api",
    "ApiState",
    "AsyncMemoryAdapter",
    "AsyncRedisAdapter",
    "AsyncSnapshotAdapter",
    "EndpointBuilder",
    "Err",
    "HandledError",
    "InvalidatedEntry",
    "MutationDefinition",
    "MutationHandle",
    "MutationId",
    "MutationSubState",
    "Ok",
    "Patch",
    "PatchCollection",
    "QueryDefinition",
    "QueryError",
    "QueryHandle",
    "QueryKitError",
    "QueryStatus",
    "QuerySubState",
    "SerializedError",
    "Store",
    "SubscriptionOptions",
    "Tag",
    "UnknownEndpointError",
    "apply_patches",
    "combine_reducers",
    "create_api",
    "dump_state",
    "fetch_base_query",
    "load_state",
    "parse_duration",
    "produce_with_patches",
    "restore_snapshot",
    "save_snapshot",
    "subscription_options",
]
