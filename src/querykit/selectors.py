"""Read-only views over the engine state."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from querykit.definitions import EndpointDefinition, expand_tag_description
from querykit.diagnostics import Diagnostics
from querykit.reducers import get_mutation_cache_key, tag_bucket
from querykit.serialize import SerializeQueryArgs
from querykit.types import (
    SKIP,
    ApiState,
    MutationSubState,
    QueryCacheKey,
    QuerySubState,
    TagDescription,
)

_logger = logging.getLogger(__name__)

RootState = Mapping[str, Any]

DEFAULT_QUERY_SUBSTATE = QuerySubState()
DEFAULT_MUTATION_SUBSTATE = MutationSubState()


@dataclass(frozen=True, slots=True)
class InvalidatedEntry:
    """A cache entry matched by an invalidation lookup."""

    endpoint_name: str
    original_args: Any
    query_cache_key: QueryCacheKey


@dataclass(frozen=True, slots=True)
class MutationId:
    """Identifies a mutation entry; ``fixed_cache_key`` wins when set."""

    request_id: str | None = None
    fixed_cache_key: str | None = None


class Selectors:
    """Selector factories bound to one reducer path."""

    def __init__(
        self,
        *,
        reducer_path: str,
        serialize_query_args: SerializeQueryArgs,
        diagnostics: Diagnostics,
    ) -> None:
        self._reducer_path = reducer_path
        self._serialize_query_args = serialize_query_args
        self._diagnostics = diagnostics

    def select_internal_state(self, root_state: RootState) -> ApiState | None:
        state = root_state.get(self._reducer_path)
        if state is None and self._diagnostics.development:
            if not self._diagnostics.missing_state_warning_done:
                self._diagnostics.missing_state_warning_done = True
                _logger.warning(
                    "No data found at state[%r]. Did you forget to add the "
                    "reducer to the store?",
                    self._reducer_path,
                )
        return state

    def build_query_selector(
        self, endpoint_name: str, definition: EndpointDefinition
    ) -> Callable[[Any], Callable[[RootState], QuerySubState]]:
        """Return ``select(arg) -> (root_state) -> QuerySubState``.

        The cache key is serialized once per ``select(arg)`` call; the
        returned substate carries the ``is_*`` status flags.
        """

        def select(query_args: Any) -> Callable[[RootState], QuerySubState]:
            if query_args is SKIP:
                return lambda root_state: DEFAULT_QUERY_SUBSTATE

            key = self._serialize_query_args(endpoint_name, query_args, definition)

            def select_substate(root_state: RootState) -> QuerySubState:
                state = self.select_internal_state(root_state)
                if state is None:
                    return DEFAULT_QUERY_SUBSTATE
                return state.queries.get(key, DEFAULT_QUERY_SUBSTATE)

            return select_substate

        return select

    def build_mutation_selector(
        self,
    ) -> Callable[[str | MutationId | Any], Callable[[RootState], MutationSubState]]:
        def select(mutation_id: str | MutationId | Any) -> Callable[[RootState], MutationSubState]:
            if isinstance(mutation_id, MutationId):
                key = get_mutation_cache_key(mutation_id.request_id, mutation_id.fixed_cache_key)
            elif mutation_id is SKIP:
                key = None
            else:
                key = mutation_id

            def select_substate(root_state: RootState) -> MutationSubState:
                state = self.select_internal_state(root_state)
                if state is None or key is None:
                    return DEFAULT_MUTATION_SUBSTATE
                return state.mutations.get(key, DEFAULT_MUTATION_SUBSTATE)

            return select_substate

        return select

    def select_invalidated_by(
        self, root_state: RootState, tags: Sequence[TagDescription]
    ) -> list[InvalidatedEntry]:
        """Cache entries currently providing any of ``tags``.

        A tag without an id matches every id of its type. Keys whose cache
        entry no longer exists are skipped.
        """
        state = self.select_internal_state(root_state)
        if state is None:
            return []

        to_invalidate: dict[QueryCacheKey, None] = {}
        for tag in map(expand_tag_description, tags):
            provided = state.provided.get(tag.type)
            if not provided:
                continue
            if tag.id is not None:
                keys: Sequence[QueryCacheKey] = provided.get(tag_bucket(tag.id), ())
            else:
                keys = [key for bucket in provided.values() for key in bucket]
            for key in keys:
                to_invalidate[key] = None

        entries = []
        for key in to_invalidate:
            substate = state.queries.get(key)
            if substate is None:
                continue
            entries.append(
                InvalidatedEntry(
                    endpoint_name=substate.endpoint_name or "",
                    original_args=substate.original_args,
                    query_cache_key=key,
                )
            )
        return entries
