"""Minimal in-process store host.

Holds the root state, runs reducers on dispatched actions, runs dispatched
callables as thunks ``(dispatch, get_state, extra)`` and chains middleware
in the usual ``middleware(store_api)(next)(action)`` shape.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from querykit.types import Action, Dispatch, GetState, Reducer

INIT = Action("@@querykit/INIT")

Middleware = Callable[["MiddlewareApi"], Callable[[Dispatch], Dispatch]]


@dataclass(frozen=True, slots=True)
class MiddlewareApi:
    dispatch: Dispatch
    get_state: GetState


def combine_reducers(
    reducers: Mapping[str, Reducer],
) -> Callable[[Mapping[str, Any] | None, Action], Mapping[str, Any]]:
    """Mount each reducer at its key of the root state."""

    def reducer(state: Mapping[str, Any] | None, action: Action) -> Mapping[str, Any]:
        previous = state or {}
        changed = state is None
        next_state = dict(previous)
        for key, part_reducer in reducers.items():
            part = part_reducer(previous.get(key), action)
            if part is not previous.get(key):
                changed = True
            next_state[key] = part
        return next_state if changed else previous

    return reducer


class Store:
    """Single-writer state container.

    Usage:
        store = Store(
            combine_reducers({api.reducer_path: api.reducer}),
            middleware=[api.middleware],
        )
        handle = store.dispatch(api.endpoints["get_post"].initiate(1))
    """

    def __init__(
        self,
        reducer: Callable[[Any, Action], Any],
        *,
        preloaded_state: Any = None,
        middleware: Iterable[Middleware] = (),
        extra: Any = None,
    ) -> None:
        self._reducer = reducer
        self._extra = extra
        self._listeners: list[Callable[[], None]] = []
        self._state = reducer(preloaded_state, INIT)

        store_api = MiddlewareApi(dispatch=self.dispatch, get_state=self.get_state)
        dispatch: Dispatch = self._reduce
        for link in reversed([m(store_api) for m in middleware]):
            dispatch = link(dispatch)
        self._chain = dispatch

    def get_state(self) -> Any:
        return self._state

    def dispatch(self, action: Any) -> Any:
        if callable(action):
            return action(self.dispatch, self.get_state, self._extra)
        return self._chain(action)

    def subscribe(self, listener: Callable[[], None]) -> Callable[[], None]:
        """Call ``listener`` after every reduced action. Returns an unsubscriber."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _reduce(self, action: Any) -> Any:
        if not isinstance(action, Action):
            raise TypeError(f"Expected Action or thunk, got {type(action).__name__}")
        self._state = self._reducer(self._state, action)
        for listener in list(self._listeners):
            listener()
        return action
