"""Three-phase async request lifecycle: pending -> fulfilled | rejected."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable, Generator, Mapping
from dataclasses import dataclass
from typing import Any

from querykit.exceptions import (
    CONDITION_ERROR,
    QueryError,
    SerializedError,
    abort_error,
)
from querykit.results import Err, Ok
from querykit.types import Action, Dispatch, GetState

_logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ThunkApi:
    """Execution context handed to the payload creator."""

    dispatch: Dispatch
    get_state: GetState
    extra: Any
    request_id: str
    signal: asyncio.Event


# Ok(value, meta) fulfills; Err(value, meta) rejects with value. ``meta`` is a
# mapping merged into the action meta.
PayloadCreator = Callable[[Any, ThunkApi], Awaitable["Ok[Any] | Err[Any]"]]
Condition = Callable[[Any, GetState, Any], bool]


class ThunkHandle:
    """Awaitable handle of one lifecycle run, resolving to its final action."""

    __slots__ = ("_abort_reason", "_future", "_task", "arg", "request_id", "signal")

    def __init__(self, arg: Any, request_id: str, future: asyncio.Future[Action]) -> None:
        self.arg = arg
        self.request_id = request_id
        self.signal = asyncio.Event()
        self._future = future
        self._abort_reason: str | None = None
        self._task: asyncio.Task[None] | None = None

    def __await__(self) -> Generator[Any, None, Action]:
        return asyncio.shield(self._future).__await__()

    def done(self) -> bool:
        return self._future.done()

    def abort(self, reason: str | None = None) -> None:
        """Settle the lifecycle as rejected and signal the base query to stop."""
        if self.signal.is_set() or self._future.done():
            return
        self._abort_reason = reason
        self.signal.set()

    async def unwrap(self) -> Any:
        """Return the fulfilled payload or raise QueryError."""
        action = await self
        if action.type.endswith("/fulfilled"):
            return action.payload
        if action.meta.get("rejected_with_value"):
            raise QueryError(action.payload)
        raise QueryError(action.error)

    def _settle(self, action: Action) -> None:
        if not self._future.done():
            self._future.set_result(action)


def _log_discarded(task: asyncio.Future[Any]) -> None:
    if not task.cancelled() and task.exception() is not None:
        _logger.debug("Discarded outcome of aborted request", exc_info=task.exception())


def _log_run_failure(task: asyncio.Future[Any]) -> None:
    if not task.cancelled() and task.exception() is not None:
        _logger.error("Lifecycle dispatch failed", exc_info=task.exception())


class AsyncThunk:
    """Builds lifecycle thunks for one action type prefix.

    Calling the instance with an argument returns a thunk
    ``(dispatch, get_state, extra) -> ThunkHandle``. Running it dispatches
    ``<prefix>/pending`` synchronously and ``<prefix>/fulfilled`` or
    ``<prefix>/rejected`` once the payload creator settles.
    """

    def __init__(
        self,
        type_prefix: str,
        payload_creator: PayloadCreator,
        *,
        condition: Condition | None = None,
        get_pending_meta: Callable[[Any], Mapping[str, Any]] | None = None,
        dispatch_condition_rejection: bool = False,
    ) -> None:
        self.type_prefix = type_prefix
        self.pending = f"{type_prefix}/pending"
        self.fulfilled = f"{type_prefix}/fulfilled"
        self.rejected = f"{type_prefix}/rejected"
        self._payload_creator = payload_creator
        self._condition = condition
        self._get_pending_meta = get_pending_meta
        self._dispatch_condition_rejection = dispatch_condition_rejection

    def match_pending(self, action: Any) -> bool:
        return isinstance(action, Action) and action.type == self.pending

    def match_fulfilled(self, action: Any) -> bool:
        return isinstance(action, Action) and action.type == self.fulfilled

    def match_rejected(self, action: Any) -> bool:
        return isinstance(action, Action) and action.type == self.rejected

    def match_rejected_with_value(self, action: Any) -> bool:
        return self.match_rejected(action) and bool(action.meta.get("rejected_with_value"))

    def __call__(self, arg: Any) -> Callable[[Dispatch, GetState, Any], ThunkHandle]:
        def thunk(dispatch: Dispatch, get_state: GetState, extra: Any) -> ThunkHandle:
            return self._start(arg, dispatch, get_state, extra)

        return thunk

    def _meta(self, arg: Any, request_id: str, status: str, **extra: Any) -> dict[str, Any]:
        return {"arg": arg, "request_id": request_id, "request_status": status, **extra}

    def _start(
        self, arg: Any, dispatch: Dispatch, get_state: GetState, extra: Any
    ) -> ThunkHandle:
        loop = asyncio.get_running_loop()
        request_id = uuid.uuid4().hex
        handle = ThunkHandle(arg, request_id, loop.create_future())

        if self._condition is not None and not self._condition(arg, get_state, extra):
            action = Action(
                self.rejected,
                meta=self._meta(arg, request_id, "rejected", condition=True),
                error=CONDITION_ERROR,
            )
            if self._dispatch_condition_rejection:
                dispatch(action)
            handle._settle(action)
            return handle

        pending_meta = dict(self._get_pending_meta(arg)) if self._get_pending_meta else {}
        dispatch(Action(self.pending, meta=self._meta(arg, request_id, "pending", **pending_meta)))
        _logger.debug("%s started (request %s)", self.type_prefix, request_id)

        thunk_api = ThunkApi(
            dispatch=dispatch,
            get_state=get_state,
            extra=extra,
            request_id=request_id,
            signal=handle.signal,
        )
        task = loop.create_task(self._run(handle, thunk_api))
        task.add_done_callback(_log_run_failure)
        handle._task = task
        return handle

    async def _run(self, handle: ThunkHandle, thunk_api: ThunkApi) -> None:
        arg, request_id = handle.arg, handle.request_id
        work = asyncio.ensure_future(self._payload_creator(arg, thunk_api))
        aborted = asyncio.ensure_future(handle.signal.wait())
        await asyncio.wait({work, aborted}, return_when=asyncio.FIRST_COMPLETED)

        if not handle.signal.is_set():
            aborted.cancel()
            try:
                outcome = work.result()
            except Exception as exc:
                action = Action(
                    self.rejected,
                    meta=self._meta(arg, request_id, "rejected"),
                    error=SerializedError.from_exception(exc),
                )
            else:
                action = self._settled_action(arg, request_id, outcome)
        else:
            # The payload creator keeps running until the base query honors
            # the signal; its eventual result is discarded.
            work.add_done_callback(_log_discarded)
            action = Action(
                self.rejected,
                meta=self._meta(arg, request_id, "rejected", aborted=True),
                error=abort_error(handle._abort_reason),
            )

        try:
            thunk_api.dispatch(action)
        finally:
            handle._settle(action)

    def _settled_action(self, arg: Any, request_id: str, outcome: Ok[Any] | Err[Any]) -> Action:
        if isinstance(outcome, Ok):
            meta = self._meta(arg, request_id, "fulfilled", **dict(outcome.meta or {}))
            return Action(self.fulfilled, payload=outcome.data, meta=meta)
        meta = self._meta(
            arg, request_id, "rejected", rejected_with_value=True, **dict(outcome.meta or {})
        )
        return Action(self.rejected, payload=outcome.error, meta=meta)
