"""State transitions for the engine's combined state.

Each part of ``ApiState`` has exactly one reducer:
- queries: lifecycle transitions keyed by (event, request id match)
- mutations: same machine, entries keyed by request id or fixed cache key
- provided: tag -> cache key index
- subscriptions: cache key -> subscriber id -> options
- config: environment flags

Reducers never mutate their input. A reducer that has nothing to do returns
its input object unchanged, so identity comparison detects "no change".
"""

from __future__ import annotations

import enum
from collections.abc import Callable, Iterable, Mapping
from dataclasses import replace
from functools import partial
from typing import Any

from querykit.definitions import (
    AssertTagType,
    EndpointDefinition,
    QueryDefinition,
    calculate_provided_by,
)
from querykit.lifecycle import AsyncThunk
from querykit.patches import apply_patches, copy_with_structural_sharing
from querykit.types import (
    Action,
    ActionCreator,
    ApiState,
    ConfigState,
    InvalidationState,
    MutationSubState,
    MutationThunkArg,
    QueryCacheKey,
    QueryStatus,
    QuerySubState,
    QueryThunkArg,
    SubscriptionOptions,
    SubscriptionState,
    Tag,
)

WITHOUT_ID = "__internal_without_id"

# Environment events are shared by every api instance
on_online = ActionCreator("querykit/online")
on_offline = ActionCreator("querykit/offline")
on_focus = ActionCreator("querykit/focus")
on_focus_lost = ActionCreator("querykit/unfocus")

ExtractRehydrationInfo = Callable[[Action, str], "ApiState | None"]

Queries = Mapping[QueryCacheKey, QuerySubState]
Mutations = Mapping[str, MutationSubState]


class LifecycleEvent(enum.Enum):
    PENDING = "pending"
    FULFILLED = "fulfilled"
    REJECTED = "rejected"


def tag_bucket(tag_id: str | int | None) -> str:
    return WITHOUT_ID if tag_id is None else str(tag_id)


def get_mutation_cache_key(request_id: str | None, fixed_cache_key: str | None) -> str | None:
    return fixed_cache_key if fixed_cache_key is not None else request_id


def _without(mapping: Mapping[str, Any], key: str) -> dict[str, Any]:
    return {k: v for k, v in mapping.items() if k != key}


def _is_pending(substate: QuerySubState | MutationSubState | None) -> bool:
    return substate is not None and substate.status is QueryStatus.PENDING


# -----------------------------------------------------------------------------
# Query transitions
# -----------------------------------------------------------------------------


def _query_pending(queries: Queries, action: Action) -> Queries:
    arg: QueryThunkArg = action.meta["arg"]
    substate = queries.get(arg.query_cache_key)
    if substate is None:
        if not arg.subscribe:
            return queries
        substate = QuerySubState(endpoint_name=arg.endpoint_name)
    changes: dict[str, Any] = {
        "status": QueryStatus.PENDING,
        "request_id": action.meta["request_id"],
        "started_time_stamp": action.meta.get("started_time_stamp"),
    }
    if arg.original_args is not None:
        changes["original_args"] = arg.original_args
    return {**queries, arg.query_cache_key: replace(substate, **changes)}


def _query_fulfilled(
    queries: Queries, action: Action, definitions: Mapping[str, EndpointDefinition]
) -> Queries:
    arg: QueryThunkArg = action.meta["arg"]
    substate = queries.get(arg.query_cache_key)
    if substate is None or substate.request_id != action.meta["request_id"]:
        return queries
    definition = definitions.get(arg.endpoint_name)
    data = action.payload
    if not isinstance(definition, QueryDefinition) or definition.structural_sharing:
        data = copy_with_structural_sharing(substate.data, data)
    fulfilled = replace(
        substate,
        status=QueryStatus.FULFILLED,
        data=data,
        error=None,
        fulfilled_time_stamp=action.meta.get("fulfilled_time_stamp"),
    )
    return {**queries, arg.query_cache_key: fulfilled}


def _query_rejected(queries: Queries, action: Action) -> Queries:
    arg: QueryThunkArg = action.meta["arg"]
    substate = queries.get(arg.query_cache_key)
    if action.meta.get("condition"):
        return queries
    if substate is None or substate.request_id != action.meta["request_id"]:
        return queries
    error = action.payload if action.meta.get("rejected_with_value") else action.error
    rejected = replace(substate, status=QueryStatus.REJECTED, error=error)
    return {**queries, arg.query_cache_key: rejected}


QueryTransition = Callable[[Queries, Action], Queries]


# -----------------------------------------------------------------------------
# Mutation transitions
# -----------------------------------------------------------------------------


def _mutation_key(action: Action) -> str | None:
    arg: MutationThunkArg = action.meta["arg"]
    return get_mutation_cache_key(action.meta["request_id"], arg.fixed_cache_key)


def _mutation_pending(mutations: Mutations, action: Action) -> Mutations:
    key = _mutation_key(action)
    assert key is not None
    substate = MutationSubState(
        status=QueryStatus.PENDING,
        endpoint_name=action.meta["arg"].endpoint_name,
        request_id=action.meta["request_id"],
        started_time_stamp=action.meta.get("started_time_stamp"),
    )
    return {**mutations, key: substate}


def _mutation_fulfilled(mutations: Mutations, action: Action) -> Mutations:
    key = _mutation_key(action)
    substate = mutations.get(key) if key is not None else None
    if substate is None or substate.request_id != action.meta["request_id"]:
        return mutations
    fulfilled = replace(
        substate,
        status=QueryStatus.FULFILLED,
        data=action.payload,
        fulfilled_time_stamp=action.meta.get("fulfilled_time_stamp"),
    )
    return {**mutations, key: fulfilled}


def _mutation_rejected(mutations: Mutations, action: Action) -> Mutations:
    key = _mutation_key(action)
    substate = mutations.get(key) if key is not None else None
    if substate is None or substate.request_id != action.meta["request_id"]:
        return mutations
    error = action.payload if action.meta.get("rejected_with_value") else action.error
    return {**mutations, key: replace(substate, status=QueryStatus.REJECTED, error=error)}


_MUTATION_TRANSITIONS: dict[LifecycleEvent, Callable[[Mutations, Action], Mutations]] = {
    LifecycleEvent.PENDING: _mutation_pending,
    LifecycleEvent.FULFILLED: _mutation_fulfilled,
    LifecycleEvent.REJECTED: _mutation_rejected,
}


# -----------------------------------------------------------------------------
# Invalidation index helpers
# -----------------------------------------------------------------------------


def _remove_provider(provided: InvalidationState, key: QueryCacheKey) -> InvalidationState:
    if not any(key in keys for ids in provided.values() for keys in ids.values()):
        return provided
    pruned: dict[str, dict[str, tuple[QueryCacheKey, ...]]] = {}
    for tag_type, ids in provided.items():
        remaining = {
            tag_id: tuple(k for k in keys if k != key)
            for tag_id, keys in ids.items()
        }
        remaining = {tag_id: keys for tag_id, keys in remaining.items() if keys}
        if remaining:
            pruned[tag_type] = remaining
    return pruned


def _add_providers(
    provided: InvalidationState,
    entries: Iterable[tuple[str, str, QueryCacheKey]],
) -> InvalidationState:
    result: dict[str, dict[str, tuple[QueryCacheKey, ...]]] | None = None
    for tag_type, bucket, key in entries:
        current = (result if result is not None else provided).get(tag_type, {}).get(bucket, ())
        if key in current:
            continue
        if result is None:
            result = {tag_type: dict(ids) for tag_type, ids in provided.items()}
        result.setdefault(tag_type, {})[bucket] = (*current, key)
    return provided if result is None else result


# -----------------------------------------------------------------------------
# Slice
# -----------------------------------------------------------------------------


class ApiSlice:
    """Action creators and the combined reducer for one api instance."""

    def __init__(
        self,
        *,
        reducer_path: str,
        query_thunk: AsyncThunk,
        mutation_thunk: AsyncThunk,
        definitions: Mapping[str, EndpointDefinition],
        assert_tag_type: AssertTagType,
        config: ConfigState,
        api_uid: str,
        extract_rehydration_info: ExtractRehydrationInfo | None = None,
    ) -> None:
        self._reducer_path = reducer_path
        self._query_thunk = query_thunk
        self._mutation_thunk = mutation_thunk
        self._definitions = definitions
        self._assert_tag_type = assert_tag_type
        self._config = config
        self._api_uid = api_uid
        self._extract_rehydration_info = extract_rehydration_info

        self.reset_api_state = ActionCreator(f"{reducer_path}/resetApiState")
        self.rehydrate = ActionCreator(f"{reducer_path}/rehydrate")
        self.remove_query_result = ActionCreator(f"{reducer_path}/queries/removeQueryResult")
        self.query_result_patched = ActionCreator(f"{reducer_path}/queries/queryResultPatched")
        self.remove_mutation_result = ActionCreator(
            f"{reducer_path}/mutations/removeMutationResult"
        )
        self.update_subscription_options = ActionCreator(
            f"{reducer_path}/subscriptions/updateSubscriptionOptions"
        )
        self.unsubscribe_query_result = ActionCreator(
            f"{reducer_path}/subscriptions/unsubscribeQueryResult"
        )
        self.middleware_registered = ActionCreator(f"{reducer_path}/config/middlewareRegistered")

        self._query_events = {
            query_thunk.pending: LifecycleEvent.PENDING,
            query_thunk.fulfilled: LifecycleEvent.FULFILLED,
            query_thunk.rejected: LifecycleEvent.REJECTED,
        }
        self._mutation_events = {
            mutation_thunk.pending: LifecycleEvent.PENDING,
            mutation_thunk.fulfilled: LifecycleEvent.FULFILLED,
            mutation_thunk.rejected: LifecycleEvent.REJECTED,
        }
        self._query_transitions: dict[LifecycleEvent, QueryTransition] = {
            LifecycleEvent.PENDING: _query_pending,
            LifecycleEvent.FULFILLED: partial(_query_fulfilled, definitions=definitions),
            LifecycleEvent.REJECTED: _query_rejected,
        }

    def initial_state(self) -> ApiState:
        return ApiState(config=self._config)

    def rehydration_info(self, action: Action) -> ApiState | None:
        if self._extract_rehydration_info is not None:
            return self._extract_rehydration_info(action, self._reducer_path)
        if self.rehydrate.match(action):
            return action.payload
        return None

    def reducer(self, state: ApiState | None, action: Action) -> ApiState:
        if state is None:
            return self.initial_state()
        if self.reset_api_state.match(action):
            # Environment-driven config survives a reset
            return ApiState(config=state.config)

        rehydrated = self.rehydration_info(action)
        queries = self._reduce_queries(state.queries, action, rehydrated)
        mutations = self._reduce_mutations(state.mutations, action, rehydrated)
        provided = self._reduce_provided(state.provided, state.queries, action, rehydrated)
        subscriptions = self._reduce_subscriptions(state.subscriptions, action)
        config = self._reduce_config(state.config, action)

        if (
            queries is state.queries
            and mutations is state.mutations
            and provided is state.provided
            and subscriptions is state.subscriptions
            and config is state.config
        ):
            return state
        return ApiState(
            queries=queries,
            mutations=mutations,
            provided=provided,
            subscriptions=subscriptions,
            config=config,
        )

    # -------------------------------------------------------------------------
    # Part reducers
    # -------------------------------------------------------------------------

    def _reduce_queries(
        self, queries: Queries, action: Action, rehydrated: ApiState | None
    ) -> Queries:
        event = self._query_events.get(action.type)
        if event is not None:
            return self._query_transitions[event](queries, action)

        if self.remove_query_result.match(action):
            key = action.payload["query_cache_key"]
            return _without(queries, key) if key in queries else queries

        if self.query_result_patched.match(action):
            key = action.payload["query_cache_key"]
            substate = queries.get(key)
            if substate is None:
                return queries
            data = apply_patches(substate.data, action.payload["patches"])
            return {**queries, key: replace(substate, data=data)}

        if rehydrated is not None:
            # In-flight local entries keep their own request
            incoming = {
                key: entry
                for key, entry in rehydrated.queries.items()
                if entry.status in (QueryStatus.FULFILLED, QueryStatus.REJECTED)
                and not _is_pending(queries.get(key))
            }
            if incoming:
                return {**queries, **incoming}
        return queries

    def _reduce_mutations(
        self, mutations: Mutations, action: Action, rehydrated: ApiState | None
    ) -> Mutations:
        event = self._mutation_events.get(action.type)
        if event is not None:
            if not action.meta["arg"].track:
                return mutations
            return _MUTATION_TRANSITIONS[event](mutations, action)

        if self.remove_mutation_result.match(action):
            key = get_mutation_cache_key(
                action.payload.get("request_id"), action.payload.get("fixed_cache_key")
            )
            return _without(mutations, key) if key in mutations else mutations

        if rehydrated is not None:
            incoming = {
                key: entry
                for key, entry in rehydrated.mutations.items()
                if entry.status in (QueryStatus.FULFILLED, QueryStatus.REJECTED)
                and key != entry.request_id
                and not _is_pending(mutations.get(key))
            }
            if incoming:
                return {**mutations, **incoming}
        return mutations

    def _reduce_provided(
        self,
        provided: InvalidationState,
        queries: Queries,
        action: Action,
        rehydrated: ApiState | None,
    ) -> InvalidationState:
        if self.remove_query_result.match(action):
            return _remove_provider(provided, action.payload["query_cache_key"])

        if rehydrated is not None:
            return _add_providers(
                provided,
                (
                    (tag_type, bucket, key)
                    for tag_type, ids in rehydrated.provided.items()
                    for bucket, keys in ids.items()
                    for key in keys
                    if not _is_pending(queries.get(key))
                ),
            )

        fulfilled = self._query_thunk.match_fulfilled(action)
        if not (fulfilled or self._query_thunk.match_rejected_with_value(action)):
            return provided

        arg: QueryThunkArg = action.meta["arg"]
        substate = queries.get(arg.query_cache_key)
        # Superseded responses do not describe the entry
        if substate is None or substate.request_id != action.meta["request_id"]:
            return provided

        definition = self._definitions.get(arg.endpoint_name)
        tags: list[Tag] = calculate_provided_by(
            getattr(definition, "provides_tags", None),
            action.payload if fulfilled else None,
            None if fulfilled else action.payload,
            arg.original_args,
            action.meta.get("base_query_meta"),
            self._assert_tag_type,
        )
        pruned = _remove_provider(provided, arg.query_cache_key)
        return _add_providers(
            pruned,
            ((tag.type, tag_bucket(tag.id), arg.query_cache_key) for tag in tags),
        )

    def _reduce_subscriptions(
        self, subscriptions: SubscriptionState, action: Action
    ) -> SubscriptionState:
        if self.remove_query_result.match(action):
            key = action.payload["query_cache_key"]
            return _without(subscriptions, key) if key in subscriptions else subscriptions

        subscribing = self._query_thunk.match_pending(action) or (
            self._query_thunk.match_rejected(action) and action.meta.get("condition")
        )
        if subscribing:
            arg: QueryThunkArg = action.meta["arg"]
            if not arg.subscribe:
                return subscriptions
            request_id = action.meta["request_id"]
            current = subscriptions.get(arg.query_cache_key, {})
            options = arg.subscription_options or current.get(request_id) or SubscriptionOptions()
            return {**subscriptions, arg.query_cache_key: {**current, request_id: options}}

        if self.update_subscription_options.match(action):
            key, request_id = action.payload["query_cache_key"], action.payload["request_id"]
            current = subscriptions.get(key)
            if current is None or request_id not in current:
                return subscriptions
            return {**subscriptions, key: {**current, request_id: action.payload["options"]}}

        if self.unsubscribe_query_result.match(action):
            key, request_id = action.payload["query_cache_key"], action.payload["request_id"]
            current = subscriptions.get(key)
            if current is None or request_id not in current:
                return subscriptions
            remaining = _without(current, request_id)
            if not remaining:
                return _without(subscriptions, key)
            return {**subscriptions, key: remaining}

        return subscriptions

    def _reduce_config(self, config: ConfigState, action: Action) -> ConfigState:
        if self.middleware_registered.match(action):
            conflict = config.middleware_registered == "conflict" or action.payload != self._api_uid
            return replace(config, middleware_registered="conflict" if conflict else True)
        if on_online.match(action):
            return replace(config, online=True)
        if on_offline.match(action):
            return replace(config, online=False)
        if on_focus.match(action):
            return replace(config, focused=True)
        if on_focus_lost.match(action):
            return replace(config, focused=False)
        return config
