"""Core types for the querykit cache engine."""

from __future__ import annotations

import enum
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Literal, Union

QueryCacheKey = str


class QueryStatus(str, enum.Enum):
    """Lifecycle status shared by query and mutation entries."""

    UNINITIALIZED = "uninitialized"
    PENDING = "pending"
    FULFILLED = "fulfilled"
    REJECTED = "rejected"


class _SkipToken:
    """Sentinel telling selectors to skip the lookup entirely."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "SKIP"

    def __reduce__(self) -> str:
        return "SKIP"


SKIP = _SkipToken()


@dataclass(frozen=True, slots=True)
class Tag:
    """Abstract label linking query results to the mutations that stale them."""

    type: str
    id: str | int | None = None


TagDescription = Union[Tag, str]


@dataclass(frozen=True, slots=True)
class RequestStatusFlags:
    """Mutually exclusive flags derived from a status."""

    status: QueryStatus
    is_uninitialized: bool
    is_loading: bool
    is_success: bool
    is_error: bool


def get_request_status_flags(status: QueryStatus) -> RequestStatusFlags:
    return RequestStatusFlags(
        status=status,
        is_uninitialized=status is QueryStatus.UNINITIALIZED,
        is_loading=status is QueryStatus.PENDING,
        is_success=status is QueryStatus.FULFILLED,
        is_error=status is QueryStatus.REJECTED,
    )


class _StatusFlags:
    __slots__ = ()

    status: QueryStatus

    @property
    def is_uninitialized(self) -> bool:
        return self.status is QueryStatus.UNINITIALIZED

    @property
    def is_loading(self) -> bool:
        return self.status is QueryStatus.PENDING

    @property
    def is_success(self) -> bool:
        return self.status is QueryStatus.FULFILLED

    @property
    def is_error(self) -> bool:
        return self.status is QueryStatus.REJECTED


@dataclass(frozen=True, slots=True)
class QuerySubState(_StatusFlags):
    """Cached state of one (endpoint, args) pair."""

    status: QueryStatus = QueryStatus.UNINITIALIZED
    endpoint_name: str | None = None
    request_id: str | None = None
    original_args: Any = None
    data: Any = None
    error: Any = None
    started_time_stamp: int | None = None  # Unix timestamp ms
    fulfilled_time_stamp: int | None = None


@dataclass(frozen=True, slots=True)
class MutationSubState(_StatusFlags):
    """Tracked state of one mutation submission."""

    status: QueryStatus = QueryStatus.UNINITIALIZED
    endpoint_name: str | None = None
    request_id: str | None = None
    data: Any = None
    error: Any = None
    started_time_stamp: int | None = None
    fulfilled_time_stamp: int | None = None


@dataclass(frozen=True, slots=True)
class SubscriptionOptions:
    """Per-subscriber refresh preferences."""

    polling_interval: int = 0  # milliseconds, 0 disables polling
    refetch_on_reconnect: bool | None = None
    refetch_on_focus: bool | None = None


@dataclass(frozen=True, slots=True)
class ConfigState:
    """Process-wide environment flags and engine defaults."""

    reducer_path: str = "api"
    online: bool = True
    focused: bool = True
    middleware_registered: bool | Literal["conflict"] = False
    keep_unused_data_for: int = 60_000  # milliseconds
    refetch_on_mount_or_arg_change: bool | float = False
    refetch_on_focus: bool = False
    refetch_on_reconnect: bool = False


# tag type -> tag id bucket -> cache keys providing that tag
InvalidationState = Mapping[str, Mapping[str, tuple[QueryCacheKey, ...]]]
# cache key -> subscriber (request) id -> options
SubscriptionState = Mapping[QueryCacheKey, Mapping[str, SubscriptionOptions]]


@dataclass(frozen=True, slots=True)
class ApiState:
    """Combined engine state mounted at the reducer path of the root state."""

    queries: Mapping[QueryCacheKey, QuerySubState] = field(default_factory=dict)
    mutations: Mapping[str, MutationSubState] = field(default_factory=dict)
    provided: InvalidationState = field(default_factory=dict)
    subscriptions: SubscriptionState = field(default_factory=dict)
    config: ConfigState = field(default_factory=ConfigState)


@dataclass(frozen=True, slots=True)
class QueryThunkArg:
    endpoint_name: str
    original_args: Any
    query_cache_key: QueryCacheKey
    subscribe: bool = True
    force_refetch: bool | float | None = None
    subscription_options: SubscriptionOptions | None = None
    type: Literal["query"] = "query"


@dataclass(frozen=True, slots=True)
class MutationThunkArg:
    endpoint_name: str
    original_args: Any
    track: bool = True
    fixed_cache_key: str | None = None
    type: Literal["mutation"] = "mutation"


@dataclass(frozen=True, slots=True)
class Action:
    """A plain state-transition event."""

    type: str
    payload: Any = None
    meta: Mapping[str, Any] = field(default_factory=dict)
    error: Any = None


class ActionCreator:
    """Callable producing actions of one type, with a matching predicate."""

    __slots__ = ("type",)

    def __init__(self, type: str) -> None:
        self.type = type

    def __call__(self, payload: Any = None) -> Action:
        return Action(self.type, payload)

    def match(self, action: Any) -> bool:
        return isinstance(action, Action) and action.type == self.type

    def __repr__(self) -> str:
        return f"ActionCreator({self.type!r})"


Dispatch = Callable[[Any], Any]
GetState = Callable[[], Mapping[str, Any]]
Reducer = Callable[[Any, Action], Any]
