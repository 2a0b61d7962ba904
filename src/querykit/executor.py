"""Request executor - runs one endpoint call inside a lifecycle thunk."""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from querykit.definitions import BaseQueryFn, EndpointDefinition
from querykit.diagnostics import Diagnostics
from querykit.exceptions import HandledError
from querykit.lifecycle import ThunkApi
from querykit.results import Err, Ok
from querykit.types import ApiState, Dispatch, GetState, MutationThunkArg, QueryThunkArg

_logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class BaseQueryApi:
    """Execution context handed to base queries and resolvers."""

    signal: asyncio.Event
    dispatch: Dispatch
    get_state: GetState
    extra: Any
    endpoint: str
    type: str
    forced: bool | None = None


def now_ms() -> int:
    return int(time.time() * 1000)


def is_forced_query(arg: QueryThunkArg, api_state: ApiState | None) -> bool:
    """Whether this fetch must run even though data is cached."""
    if api_state is None:
        return False
    request_state = api_state.queries.get(arg.query_cache_key)
    if arg.force_refetch is not None:
        refetch_val: bool | float = arg.force_refetch
    else:
        refetch_val = arg.subscribe and api_state.config.refetch_on_mount_or_arg_change
    if not refetch_val:
        return False
    if refetch_val is True:
        return True
    fulfilled = request_state.fulfilled_time_stamp if request_state else None
    if fulfilled is None:
        return False
    return (now_ms() - fulfilled) / 1000 >= refetch_val


class Executor:
    """Payload creator shared by the query and mutation thunks.

    Chooses between the base query and a custom ``query_fn``, applies
    ``transform_response`` and converts the outcome into Ok/Err for the
    lifecycle. Unhandled exceptions are logged and re-raised.
    """

    def __init__(
        self,
        *,
        base_query: BaseQueryFn,
        definitions: Mapping[str, EndpointDefinition],
        select_api_state: Callable[[Mapping[str, Any]], ApiState | None],
        diagnostics: Diagnostics,
    ) -> None:
        self._base_query = base_query
        self._definitions = definitions
        self._select_api_state = select_api_state
        self._diagnostics = diagnostics

    async def __call__(
        self, arg: QueryThunkArg | MutationThunkArg, thunk_api: ThunkApi
    ) -> Ok[Any] | Err[Any]:
        definition = self._definitions[arg.endpoint_name]
        forced = None
        if isinstance(arg, QueryThunkArg):
            forced = is_forced_query(arg, self._select_api_state(thunk_api.get_state()))
        base_query_api = BaseQueryApi(
            signal=thunk_api.signal,
            dispatch=thunk_api.dispatch,
            get_state=thunk_api.get_state,
            extra=thunk_api.extra,
            endpoint=arg.endpoint_name,
            type=arg.type,
            forced=forced,
        )

        try:
            transform_response = None
            if definition.query is not None:
                result = await self._base_query(
                    definition.query(arg.original_args),
                    base_query_api,
                    definition.extra_options,
                )
                transform_response = definition.transform_response
            else:
                assert definition.query_fn is not None

                def base_query(request: Any) -> Any:
                    return self._base_query(request, base_query_api, definition.extra_options)

                result = await definition.query_fn(
                    arg.original_args,
                    base_query_api,
                    definition.extra_options,
                    base_query,
                )

            if not isinstance(result, (Ok, Err)):
                what = "`base_query`" if definition.query is not None else "`query_fn`"
                if self._diagnostics.development:
                    _logger.error(
                        "Error encountered handling the endpoint %s. %s returned %r; "
                        "it needs to return Ok(data, meta) or Err(error, meta).",
                        arg.endpoint_name,
                        what,
                        result,
                    )
                raise TypeError(f"{what} returned {type(result).__name__}, expected Ok or Err")

            if isinstance(result, Err):
                raise HandledError(result.error, result.meta)

            data = result.data
            if transform_response is not None:
                data = transform_response(data, result.meta, arg.original_args)
                if inspect.isawaitable(data):
                    data = await data
            return Ok(
                data,
                {"fulfilled_time_stamp": now_ms(), "base_query_meta": result.meta},
            )
        except HandledError as exc:
            return Err(exc.value, {"base_query_meta": exc.meta})
        except Exception:
            if self._diagnostics.development:
                _logger.exception(
                    "An unhandled error occurred processing a request for the "
                    "endpoint %r. In the case of an unhandled error, no tags "
                    "will be provided or invalidated.",
                    arg.endpoint_name,
                )
            else:
                _logger.exception("Unhandled error in endpoint %r", arg.endpoint_name)
            raise
