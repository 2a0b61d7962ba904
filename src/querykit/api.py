"""create_api - assembles the engine for a set of endpoints."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from querykit.definitions import (
    BaseQueryFn,
    DefinitionType,
    EndpointBuilder,
    EndpointDefinition,
    MutationDefinition,
    QueryDefinition,
)
from querykit.diagnostics import Diagnostics
from querykit.duration import Duration, parse_duration
from querykit.exceptions import UnknownEndpointError
from querykit.executor import Executor
from querykit.initiate import Initiator, RunningOperations
from querykit.middleware import build_middleware
from querykit.reducers import (
    ApiSlice,
    ExtractRehydrationInfo,
    on_focus,
    on_focus_lost,
    on_offline,
    on_online,
)
from querykit.selectors import InvalidatedEntry, Selectors
from querykit.serialize import SerializeQueryArgs, default_serialize_query_args
from querykit.thunks import Thunks
from querykit.types import Action, ActionCreator, ApiState, ConfigState, Tag, TagDescription

_logger = logging.getLogger(__name__)

EndpointsFactory = Callable[[EndpointBuilder], Mapping[str, EndpointDefinition]]
Enhancement = Mapping[str, Any] | Callable[[EndpointDefinition], None]


class InternalActions:
    """Action creators the engine dispatches on its own behalf."""

    def __init__(self, api_slice: ApiSlice, reducer_path: str) -> None:
        self.remove_query_result = api_slice.remove_query_result
        self.query_result_patched = api_slice.query_result_patched
        self.update_subscription_options = api_slice.update_subscription_options
        self.unsubscribe_query_result = api_slice.unsubscribe_query_result
        self.remove_mutation_result = api_slice.remove_mutation_result
        self.middleware_registered = api_slice.middleware_registered
        self.reset_api_state = api_slice.reset_api_state
        self.rehydrate = api_slice.rehydrate
        self.invalidate_tags = ActionCreator(f"{reducer_path}/invalidateTags")
        self.on_online = on_online
        self.on_offline = on_offline
        self.on_focus = on_focus
        self.on_focus_lost = on_focus_lost


@dataclass
class ApiEndpointQuery:
    name: str
    definition: QueryDefinition
    initiate: Callable[..., Any]
    select: Callable[[Any], Callable[[Mapping[str, Any]], Any]]
    match_pending: Callable[[Any], bool]
    match_fulfilled: Callable[[Any], bool]
    match_rejected: Callable[[Any], bool]


@dataclass
class ApiEndpointMutation:
    name: str
    definition: MutationDefinition
    initiate: Callable[..., Any]
    select: Callable[[Any], Callable[[Mapping[str, Any]], Any]]
    match_pending: Callable[[Any], bool]
    match_fulfilled: Callable[[Any], bool]
    match_rejected: Callable[[Any], bool]


class ApiUtil:
    """Cache utilities exposed as ``api.util``."""

    def __init__(self, api: Api) -> None:
        self._api = api
        self.prefetch = api.thunks.prefetch
        self.patch_query_data = api.thunks.patch_query_data
        self.update_query_data = api.thunks.update_query_data
        self.get_running_operation_promise = api.initiator.get_running_operation_promise
        self.get_running_operation_promises = api.initiator.get_running_operation_promises

    def select_invalidated_by(
        self, root_state: Mapping[str, Any], tags: Sequence[TagDescription]
    ) -> list[InvalidatedEntry]:
        return self._api.selectors.select_invalidated_by(root_state, tags)

    def invalidate_tags(self, tags: Iterable[TagDescription]) -> Action:
        """Action handled by the api middleware; needs a running event loop."""
        return self._api.internal_actions.invalidate_tags(list(tags))

    def reset_api_state(self) -> Action:
        return self._api.internal_actions.reset_api_state()

    def rehydrate(self, state: ApiState) -> Action:
        return self._api.internal_actions.rehydrate(state)


def _matches_endpoint(matcher: Callable[[Any], bool], endpoint_name: str) -> Callable[[Any], bool]:
    def match(action: Any) -> bool:
        return matcher(action) and action.meta["arg"].endpoint_name == endpoint_name

    return match


class Api:
    """The engine for one reducer path. Build it with ``create_api``."""

    def __init__(
        self,
        *,
        base_query: BaseQueryFn,
        reducer_path: str,
        tag_types: Iterable[str],
        serialize_query_args: SerializeQueryArgs,
        config: ConfigState,
        extract_rehydration_info: ExtractRehydrationInfo | None,
        development: bool,
    ) -> None:
        self.reducer_path = reducer_path
        self.uid = uuid.uuid4().hex
        self.tag_types: list[str] = list(tag_types)
        self.serialize_query_args = serialize_query_args
        self.diagnostics = Diagnostics(development=development)
        self.definitions: dict[str, EndpointDefinition] = {}
        self.endpoints: dict[str, ApiEndpointQuery | ApiEndpointMutation] = {}

        self.selectors = Selectors(
            reducer_path=reducer_path,
            serialize_query_args=serialize_query_args,
            diagnostics=self.diagnostics,
        )
        executor = Executor(
            base_query=base_query,
            definitions=self.definitions,
            select_api_state=self.selectors.select_internal_state,
            diagnostics=self.diagnostics,
        )
        self.thunks = Thunks(self, executor)
        self.slice = ApiSlice(
            reducer_path=reducer_path,
            query_thunk=self.thunks.query_thunk,
            mutation_thunk=self.thunks.mutation_thunk,
            definitions=self.definitions,
            assert_tag_type=self.assert_tag_type,
            config=config,
            api_uid=self.uid,
            extract_rehydration_info=extract_rehydration_info,
        )
        self.reducer = self.slice.reducer
        self.internal_actions = InternalActions(self.slice, reducer_path)
        self.initiator = Initiator(self, RunningOperations())
        self.util = ApiUtil(self)
        self.middleware = build_middleware(self)

    def definition(self, endpoint_name: str) -> EndpointDefinition:
        try:
            return self.definitions[endpoint_name]
        except KeyError:
            raise UnknownEndpointError(endpoint_name) from None

    def assert_tag_type(self, tag: Tag) -> Tag:
        if self.diagnostics.development and tag.type not in self.tag_types:
            _logger.error(
                "Tag type %r was used, but not specified in `tag_types`!", tag.type
            )
        return tag

    def inject_endpoints(
        self,
        endpoints: EndpointsFactory,
        *,
        override_existing: bool = False,
    ) -> Api:
        """Add endpoint definitions. Existing names are kept unless overridden."""
        for endpoint_name, definition in endpoints(EndpointBuilder()).items():
            if not override_existing and endpoint_name in self.definitions:
                if self.diagnostics.development:
                    _logger.error(
                        "Called `inject_endpoints` to override already-existing "
                        "endpoint %r without specifying `override_existing=True`",
                        endpoint_name,
                    )
                continue
            self.definitions[endpoint_name] = definition
            self._inject_endpoint(endpoint_name, definition)
        return self

    def enhance_endpoints(
        self,
        *,
        add_tag_types: Iterable[str] = (),
        endpoints: Mapping[str, Enhancement] | None = None,
    ) -> Api:
        """Declare more tag types and patch existing definitions in place."""
        for tag_type in add_tag_types:
            if tag_type not in self.tag_types:
                self.tag_types.append(tag_type)
        for endpoint_name, enhancement in (endpoints or {}).items():
            definition = self.definition(endpoint_name)
            if callable(enhancement):
                enhancement(definition)
            else:
                for field_name, value in enhancement.items():
                    setattr(definition, field_name, value)
        return self

    def _inject_endpoint(self, endpoint_name: str, definition: EndpointDefinition) -> None:
        if definition.type is DefinitionType.QUERY:
            assert isinstance(definition, QueryDefinition)
            thunk = self.thunks.query_thunk
            self.endpoints[endpoint_name] = ApiEndpointQuery(
                name=endpoint_name,
                definition=definition,
                initiate=self.initiator.build_initiate_query(endpoint_name, definition),
                select=self.selectors.build_query_selector(endpoint_name, definition),
                match_pending=_matches_endpoint(thunk.match_pending, endpoint_name),
                match_fulfilled=_matches_endpoint(thunk.match_fulfilled, endpoint_name),
                match_rejected=_matches_endpoint(thunk.match_rejected, endpoint_name),
            )
        else:
            assert isinstance(definition, MutationDefinition)
            thunk = self.thunks.mutation_thunk
            self.endpoints[endpoint_name] = ApiEndpointMutation(
                name=endpoint_name,
                definition=definition,
                initiate=self.initiator.build_initiate_mutation(endpoint_name),
                select=self.selectors.build_mutation_selector(),
                match_pending=_matches_endpoint(thunk.match_pending, endpoint_name),
                match_fulfilled=_matches_endpoint(thunk.match_fulfilled, endpoint_name),
                match_rejected=_matches_endpoint(thunk.match_rejected, endpoint_name),
            )


def create_api(
    *,
    base_query: BaseQueryFn,
    endpoints: EndpointsFactory,
    reducer_path: str = "api",
    tag_types: Iterable[str] = (),
    serialize_query_args: SerializeQueryArgs = default_serialize_query_args,
    keep_unused_data_for: Duration = "60s",
    refetch_on_mount_or_arg_change: bool | float = False,
    refetch_on_focus: bool = False,
    refetch_on_reconnect: bool = False,
    extract_rehydration_info: ExtractRehydrationInfo | None = None,
    development: bool = __debug__,
) -> Api:
    """Create an api for a base query and a set of endpoints.

    Args:
        base_query: async (request, api, extra_options) -> Ok | Err
        endpoints: callable receiving an EndpointBuilder, returning definitions
        reducer_path: key of the root state the reducer is mounted at
        tag_types: declared tag types (checked in development)
        serialize_query_args: (endpoint_name, args, definition) -> cache key
        keep_unused_data_for: how long unsubscribed data may be kept
        refetch_on_mount_or_arg_change: True, or an age in seconds, forcing
            subscribing queries to refetch
        refetch_on_focus: default focus refetch flag for subscribers
        refetch_on_reconnect: default reconnect refetch flag for subscribers
        extract_rehydration_info: (action, reducer_path) -> ApiState | None
        development: enable diagnostic logging

    Returns:
        Api with ``endpoints``, ``util``, ``reducer`` and ``middleware``
    """
    if not isinstance(refetch_on_mount_or_arg_change, bool) and refetch_on_mount_or_arg_change < 0:
        raise ValueError("refetch_on_mount_or_arg_change must be a bool or a non-negative age")

    config = ConfigState(
        reducer_path=reducer_path,
        keep_unused_data_for=parse_duration(keep_unused_data_for),
        refetch_on_mount_or_arg_change=refetch_on_mount_or_arg_change,
        refetch_on_focus=refetch_on_focus,
        refetch_on_reconnect=refetch_on_reconnect,
    )
    api = Api(
        base_query=base_query,
        reducer_path=reducer_path,
        tag_types=tag_types,
        serialize_query_args=serialize_query_args,
        config=config,
        extract_rehydration_info=extract_rehydration_info,
        development=development,
    )
    return api.inject_endpoints(endpoints)


__all__ = ["Api", "ApiEndpointMutation", "ApiEndpointQuery", "create_api"]
