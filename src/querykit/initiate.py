"""Public request initiation: query/mutation handles and the dedup registry."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Generator
from typing import TYPE_CHECKING, Any

from querykit.definitions import DefinitionType, EndpointDefinition
from querykit.duration import parse_duration
from querykit.exceptions import QueryError
from querykit.lifecycle import ThunkHandle
from querykit.results import Err, Ok
from querykit.types import (
    Dispatch,
    GetState,
    MutationThunkArg,
    QueryCacheKey,
    QueryStatus,
    QuerySubState,
    QueryThunkArg,
    SubscriptionOptions,
)

if TYPE_CHECKING:
    from querykit.api import Api

_logger = logging.getLogger(__name__)


def subscription_options(
    *,
    polling_interval: str | int = 0,
    refetch_on_reconnect: bool | None = None,
    refetch_on_focus: bool | None = None,
) -> SubscriptionOptions:
    """Build SubscriptionOptions, accepting ``"30s"``-style intervals."""
    return SubscriptionOptions(
        polling_interval=parse_duration(polling_interval),
        refetch_on_reconnect=refetch_on_reconnect,
        refetch_on_focus=refetch_on_focus,
    )


class QueryHandle:
    """Awaitable result of ``initiate`` for a query.

    Usage:
        handle = store.dispatch(api.endpoints["get_post"].initiate(1))
        result = await handle            # QuerySubState with is_* flags
        post = await handle.unwrap()     # data, or raises QueryError
        handle.unsubscribe()
    """

    def __init__(
        self,
        *,
        arg: Any,
        query_cache_key: QueryCacheKey,
        subscribe: bool,
        subscription_options: SubscriptionOptions | None,
        thunk_result: ThunkHandle,
        future: asyncio.Future[QuerySubState],
        endpoint_name: str,
        api: Api,
        dispatch: Dispatch,
    ) -> None:
        self.arg = arg
        self.query_cache_key = query_cache_key
        self.request_id = thunk_result.request_id
        self.subscription_options = subscription_options
        self._subscribe = subscribe
        self._thunk_result = thunk_result
        self._future = future
        self._endpoint_name = endpoint_name
        self._api = api
        self._dispatch = dispatch

    def __await__(self) -> Generator[Any, None, QuerySubState]:
        return asyncio.shield(self._future).__await__()

    def done(self) -> bool:
        return self._future.done()

    def add_done_callback(self, callback: Callable[[QueryHandle], None]) -> None:
        self._future.add_done_callback(lambda _: callback(self))

    def abort(self, reason: str | None = None) -> None:
        self._thunk_result.abort(reason)

    async def unwrap(self) -> Any:
        """Return the cached data or raise QueryError with the stored error."""
        result = await self
        if result.is_error:
            raise QueryError(result.error)
        return result.data

    def refetch(self) -> QueryHandle:
        """Force a new fetch without adding a subscriber."""
        return self._dispatch(
            self._api.endpoints[self._endpoint_name].initiate(
                self.arg, subscribe=False, force_refetch=True
            )
        )

    def unsubscribe(self) -> None:
        if self._subscribe:
            self._dispatch(
                self._api.internal_actions.unsubscribe_query_result(
                    {"query_cache_key": self.query_cache_key, "request_id": self.request_id}
                )
            )

    def update_subscription_options(self, options: SubscriptionOptions) -> None:
        self.subscription_options = options
        self._dispatch(
            self._api.internal_actions.update_subscription_options(
                {
                    "endpoint_name": self._endpoint_name,
                    "request_id": self.request_id,
                    "query_cache_key": self.query_cache_key,
                    "options": options,
                }
            )
        )


class MutationHandle:
    """Awaitable result of ``initiate`` for a mutation, resolving to Ok/Err."""

    def __init__(
        self,
        *,
        arg: MutationThunkArg,
        thunk_result: ThunkHandle,
        future: asyncio.Future[Ok[Any] | Err[Any]],
        api: Api,
        dispatch: Dispatch,
    ) -> None:
        self.arg = arg
        self.request_id = thunk_result.request_id
        self._thunk_result = thunk_result
        self._future = future
        self._api = api
        self._dispatch = dispatch

    def __await__(self) -> Generator[Any, None, Ok[Any] | Err[Any]]:
        return asyncio.shield(self._future).__await__()

    def done(self) -> bool:
        return self._future.done()

    def add_done_callback(self, callback: Callable[[MutationHandle], None]) -> None:
        self._future.add_done_callback(lambda _: callback(self))

    def abort(self, reason: str | None = None) -> None:
        self._thunk_result.abort(reason)

    async def unwrap(self) -> Any:
        return await self._thunk_result.unwrap()

    def reset(self) -> None:
        """Remove this mutation's tracked entry."""
        self._dispatch(
            self._api.internal_actions.remove_mutation_result(
                {"request_id": self.request_id, "fixed_cache_key": self.arg.fixed_cache_key}
            )
        )

    unsubscribe = reset


class RunningOperations:
    """In-flight handles, one per query cache key and per mutation id.

    Each api owns its own registry. Entries are added once per new logical
    request and dropped when that request's handle settles.
    """

    def __init__(self) -> None:
        self._queries: dict[QueryCacheKey, QueryHandle] = {}
        self._mutations: dict[str, MutationHandle] = {}

    def query(self, query_cache_key: QueryCacheKey) -> QueryHandle | None:
        return self._queries.get(query_cache_key)

    def mutation(self, key: str) -> MutationHandle | None:
        return self._mutations.get(key)

    def track_query(
        self, query_cache_key: QueryCacheKey, handle: QueryHandle, *, supersede: bool = False
    ) -> None:
        """Register ``handle`` for the key.

        The first handle for a key is kept unless ``supersede`` is set, which
        a forced fetch uses once its request owns the cache entry.
        """
        if query_cache_key in self._queries and not supersede:
            return
        self._queries[query_cache_key] = handle
        handle.add_done_callback(lambda h: self._discard(self._queries, query_cache_key, h))

    def track_mutation(self, key: str, handle: MutationHandle) -> None:
        self._mutations[key] = handle
        handle.add_done_callback(lambda h: self._discard(self._mutations, key, h))

    @staticmethod
    def _discard(registry: dict[str, Any], key: str, handle: Any) -> None:
        if registry.get(key) is handle:
            del registry[key]

    def all(self) -> list[QueryHandle | MutationHandle]:
        return [*self._queries.values(), *self._mutations.values()]


class Initiator:
    """Builds ``initiate`` action creators for the endpoints of one api."""

    def __init__(self, api: Api, running: RunningOperations) -> None:
        self._api = api
        self._running = running

    def _middleware_warning(self, get_state: GetState) -> None:
        diagnostics = self._api.diagnostics
        if not diagnostics.development or diagnostics.middleware_warning_done:
            return
        state = get_state().get(self._api.reducer_path)
        if state is None:
            return
        diagnostics.middleware_warning_done = True
        if state.config.middleware_registered is False:
            _logger.warning(
                "Middleware for the api at reducer path %r has not been added to "
                "the store. Tag invalidation will not be available.",
                self._api.reducer_path,
            )

    def build_initiate_query(
        self, endpoint_name: str, definition: EndpointDefinition
    ) -> Callable[..., Callable[[Dispatch, GetState, Any], QueryHandle]]:
        def query_action(
            arg: Any,
            *,
            subscribe: bool = True,
            force_refetch: bool | float | None = None,
            subscription_options: SubscriptionOptions | None = None,
        ) -> Callable[[Dispatch, GetState, Any], QueryHandle]:
            def thunk(dispatch: Dispatch, get_state: GetState, extra: Any) -> QueryHandle:
                query_cache_key = self._api.serialize_query_args(endpoint_name, arg, definition)
                thunk_result: ThunkHandle = dispatch(
                    self._api.thunks.query_thunk(
                        QueryThunkArg(
                            endpoint_name=endpoint_name,
                            original_args=arg,
                            query_cache_key=query_cache_key,
                            subscribe=subscribe,
                            force_refetch=force_refetch,
                            subscription_options=subscription_options,
                        )
                    )
                )
                self._middleware_warning(get_state)
                running = self._running.query(query_cache_key)
                if running is not None:
                    _logger.debug("Joining in-flight request for %s", query_cache_key)
                state = self._api.selectors.select_internal_state(get_state())
                entry = state.queries.get(query_cache_key) if state else None
                owns_entry = entry is not None and entry.request_id == thunk_result.request_id

                async def resolve() -> QuerySubState:
                    if running is not None:
                        await running._thunk_result
                    await thunk_result
                    return await self._settled(endpoint_name, arg, query_cache_key, get_state)

                handle = QueryHandle(
                    arg=arg,
                    query_cache_key=query_cache_key,
                    subscribe=subscribe,
                    subscription_options=subscription_options,
                    thunk_result=thunk_result,
                    future=asyncio.ensure_future(resolve()),
                    endpoint_name=endpoint_name,
                    api=self._api,
                    dispatch=dispatch,
                )
                if running is None or owns_entry:
                    self._running.track_query(query_cache_key, handle, supersede=owns_entry)
                return handle

            return thunk

        return query_action

    async def _settled(
        self, endpoint_name: str, arg: Any, query_cache_key: QueryCacheKey, get_state: GetState
    ) -> QuerySubState:
        """Select the entry once no tracked request still holds it pending."""
        select = self._api.endpoints[endpoint_name].select(arg)
        while True:
            result = select(get_state())
            newer = self._running.query(query_cache_key)
            if (
                result.status is not QueryStatus.PENDING
                or newer is None
                or newer.request_id != result.request_id
                or newer._thunk_result.done()
            ):
                return result
            _logger.debug("Waiting on newer request %s for %s", newer.request_id, query_cache_key)
            await newer._thunk_result

    def build_initiate_mutation(
        self, endpoint_name: str
    ) -> Callable[..., Callable[[Dispatch, GetState, Any], MutationHandle]]:
        def mutation_action(
            arg: Any,
            *,
            track: bool = True,
            fixed_cache_key: str | None = None,
        ) -> Callable[[Dispatch, GetState, Any], MutationHandle]:
            def thunk(dispatch: Dispatch, get_state: GetState, extra: Any) -> MutationHandle:
                thunk_arg = MutationThunkArg(
                    endpoint_name=endpoint_name,
                    original_args=arg,
                    track=track,
                    fixed_cache_key=fixed_cache_key,
                )
                thunk_result: ThunkHandle = dispatch(self._api.thunks.mutation_thunk(thunk_arg))
                self._middleware_warning(get_state)

                async def resolve() -> Ok[Any] | Err[Any]:
                    try:
                        return Ok(await thunk_result.unwrap())
                    except QueryError as exc:
                        return Err(exc.error)

                handle = MutationHandle(
                    arg=thunk_arg,
                    thunk_result=thunk_result,
                    future=asyncio.ensure_future(resolve()),
                    api=self._api,
                    dispatch=dispatch,
                )
                self._running.track_mutation(handle.request_id, handle)
                if fixed_cache_key is not None:
                    self._running.track_mutation(fixed_cache_key, handle)
                return handle

            return thunk

        return mutation_action

    def get_running_operation_promise(
        self, endpoint_name: str, arg_or_request_id: Any
    ) -> QueryHandle | MutationHandle | None:
        definition = self._api.definition(endpoint_name)
        if definition.type is DefinitionType.QUERY:
            key = self._api.serialize_query_args(endpoint_name, arg_or_request_id, definition)
            return self._running.query(key)
        return self._running.mutation(arg_or_request_id)

    def get_running_operation_promises(self) -> list[QueryHandle | MutationHandle]:
        return self._running.all()
