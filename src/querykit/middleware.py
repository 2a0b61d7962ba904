"""Store middleware: registration handshake and tag invalidation fan-out."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from querykit.definitions import MutationDefinition, calculate_provided_by
from querykit.store import MiddlewareApi
from querykit.types import Action, Dispatch, QueryStatus, TagDescription

if TYPE_CHECKING:
    from querykit.api import Api

_logger = logging.getLogger(__name__)


def build_middleware(api: Api) -> Any:
    """Middleware for one api.

    After a mutation fulfills (or rejects with a value) and on
    ``invalidate_tags``, every cache entry providing an affected tag is
    refetched if it has subscribers and removed otherwise.
    """

    def middleware(store_api: MiddlewareApi) -> Any:
        registered = False

        def invalidate(tags: Sequence[TagDescription]) -> None:
            root_state = store_api.get_state()
            state = api.selectors.select_internal_state(root_state)
            if state is None:
                return
            for entry in api.selectors.select_invalidated_by(root_state, tags):
                substate = state.queries.get(entry.query_cache_key)
                if not state.subscriptions.get(entry.query_cache_key):
                    _logger.debug("Removing unsubscribed entry %s", entry.query_cache_key)
                    store_api.dispatch(
                        api.internal_actions.remove_query_result(
                            {"query_cache_key": entry.query_cache_key}
                        )
                    )
                elif substate is not None and substate.status is not QueryStatus.UNINITIALIZED:
                    _logger.debug("Refetching invalidated entry %s", entry.query_cache_key)
                    store_api.dispatch(
                        api.endpoints[entry.endpoint_name].initiate(
                            entry.original_args, subscribe=False, force_refetch=True
                        )
                    )

        def mutation_invalidates(action: Action) -> list[Any]:
            arg = action.meta["arg"]
            definition = api.definitions.get(arg.endpoint_name)
            if not isinstance(definition, MutationDefinition):
                return []
            fulfilled = api.thunks.mutation_thunk.match_fulfilled(action)
            return calculate_provided_by(
                definition.invalidates_tags,
                action.payload if fulfilled else None,
                None if fulfilled else action.payload,
                arg.original_args,
                action.meta.get("base_query_meta"),
                api.assert_tag_type,
            )

        def wrap(next_dispatch: Dispatch) -> Dispatch:
            def dispatch(action: Any) -> Any:
                nonlocal registered
                if not registered:
                    registered = True
                    store_api.dispatch(api.internal_actions.middleware_registered(api.uid))

                result = next_dispatch(action)

                if api.thunks.mutation_thunk.match_fulfilled(
                    action
                ) or api.thunks.mutation_thunk.match_rejected_with_value(action):
                    invalidate(mutation_invalidates(action))
                elif api.internal_actions.invalidate_tags.match(action):
                    invalidate(action.payload)
                return result

            return dispatch

        return wrap

    return middleware
