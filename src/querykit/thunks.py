"""Lifecycle thunks and cache utility thunks built for one api."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from querykit.duration import Duration, parse_seconds
from querykit.executor import Executor, is_forced_query, now_ms
from querykit.lifecycle import AsyncThunk
from querykit.patches import Patch, produce_with_patches
from querykit.types import Dispatch, GetState, QueryStatus, QueryThunkArg

if TYPE_CHECKING:
    from querykit.api import Api
    from querykit.initiate import QueryHandle

Thunk = Callable[[Dispatch, GetState, Any], Any]


@dataclass(frozen=True)
class PatchCollection:
    """Outcome of an optimistic update.

    ``undo()`` dispatches ``inverse_patches`` as a new patch. It does not
    reconcile edits applied to the entry after the update; callers sequence
    their own rollbacks.
    """

    patches: list[Patch] = field(default_factory=list)
    inverse_patches: list[Patch] = field(default_factory=list)
    _undo: Callable[[], Any] = field(default=lambda: None, repr=False, compare=False)

    def undo(self) -> None:
        self._undo()


class Thunks:
    def __init__(self, api: Api, executor: Executor) -> None:
        self._api = api
        self.query_thunk = AsyncThunk(
            f"{api.reducer_path}/executeQuery",
            executor,
            condition=self._query_condition,
            get_pending_meta=self._pending_meta,
            dispatch_condition_rejection=True,
        )
        self.mutation_thunk = AsyncThunk(
            f"{api.reducer_path}/executeMutation",
            executor,
            get_pending_meta=self._pending_meta,
        )

    @staticmethod
    def _pending_meta(arg: Any) -> dict[str, Any]:
        return {"started_time_stamp": now_ms()}

    def _query_condition(self, arg: QueryThunkArg, get_state: GetState, extra: Any) -> bool:
        state = self._api.selectors.select_internal_state(get_state())
        request_state = state.queries.get(arg.query_cache_key) if state else None
        if is_forced_query(arg, state):
            return True
        if request_state is not None and request_state.status is QueryStatus.PENDING:
            return False
        if request_state is not None and request_state.fulfilled_time_stamp:
            return False
        return True

    def patch_query_data(self, endpoint_name: str, args: Any, patches: Sequence[Patch]) -> Thunk:
        """Apply precomputed patches to a cached entry's data."""
        definition = self._api.definition(endpoint_name)

        def thunk(dispatch: Dispatch, get_state: GetState, extra: Any) -> None:
            key = self._api.serialize_query_args(endpoint_name, args, definition)
            dispatch(
                self._api.internal_actions.query_result_patched(
                    {"query_cache_key": key, "patches": list(patches)}
                )
            )

        return thunk

    def update_query_data(
        self, endpoint_name: str, args: Any, recipe: Callable[[Any], Any]
    ) -> Thunk:
        """Optimistically update cached data through ``recipe``.

        The recipe receives a copy of the cached data and may mutate it in
        place or return a replacement. If it raises, nothing is dispatched.
        """
        self._api.definition(endpoint_name)

        def thunk(dispatch: Dispatch, get_state: GetState, extra: Any) -> PatchCollection:
            current = self._api.endpoints[endpoint_name].select(args)(get_state())
            if current.status is QueryStatus.UNINITIALIZED:
                return PatchCollection()
            if current.data is None and current.fulfilled_time_stamp is None:
                return PatchCollection()

            _, patches, inverse_patches = produce_with_patches(current.data, recipe)

            def undo() -> None:
                dispatch(self.patch_query_data(endpoint_name, args, inverse_patches))

            dispatch(self.patch_query_data(endpoint_name, args, patches))
            return PatchCollection(patches, inverse_patches, undo)

        return thunk

    def prefetch(
        self,
        endpoint_name: str,
        arg: Any,
        *,
        force: bool = False,
        if_older_than: Duration | float | None = None,
    ) -> Thunk:
        """Start a query ahead of use.

        ``force`` always refetches. ``if_older_than`` (seconds, or a duration
        string) refetches only when the entry was never fulfilled or is at
        least that old. A falsy ``if_older_than`` such as 0 sets no threshold,
        and the normal dedup rules apply.
        """
        self._api.definition(endpoint_name)
        max_age = parse_seconds(if_older_than) if if_older_than else None

        def thunk(dispatch: Dispatch, get_state: GetState, extra: Any) -> QueryHandle | None:
            endpoint = self._api.endpoints[endpoint_name]
            if force:
                return dispatch(endpoint.initiate(arg, force_refetch=True))
            if max_age is not None:
                last_fulfilled = endpoint.select(arg)(get_state()).fulfilled_time_stamp
                if last_fulfilled is None or (now_ms() - last_fulfilled) / 1000 >= max_age:
                    return dispatch(endpoint.initiate(arg, force_refetch=True))
                return None
            return dispatch(endpoint.initiate(arg, force_refetch=False))

        return thunk
