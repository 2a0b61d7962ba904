"""Tests for the api reducer, driven by hand-built lifecycle actions."""

from dataclasses import replace
from typing import Any

import pytest

from querykit import Action, ApiState, QueryStatus, SubscriptionOptions, Tag, create_api
from querykit.api import Api
from querykit.exceptions import CONDITION_ERROR, SerializedError
from querykit.reducers import WITHOUT_ID, tag_bucket
from querykit.store import INIT
from querykit.types import MutationSubState, MutationThunkArg, QuerySubState, QueryThunkArg

KEY = "get_post(1)"


def query_arg(subscribe: bool = True, **kwargs: Any) -> QueryThunkArg:
    return QueryThunkArg("get_post", 1, KEY, subscribe=subscribe, **kwargs)


class Lifecycle:
    """Builds query and mutation lifecycle actions for one api."""

    def __init__(self, api: Api) -> None:
        self.query = api.thunks.query_thunk
        self.mutation = api.thunks.mutation_thunk

    def pending(self, request_id: str, arg: Any = None) -> Action:
        arg = arg or query_arg()
        thunk = self.query if arg.type == "query" else self.mutation
        return Action(
            thunk.pending,
            meta={"arg": arg, "request_id": request_id, "started_time_stamp": 10},
        )

    def fulfilled(self, request_id: str, data: Any, arg: Any = None) -> Action:
        arg = arg or query_arg()
        thunk = self.query if arg.type == "query" else self.mutation
        return Action(
            thunk.fulfilled,
            payload=data,
            meta={"arg": arg, "request_id": request_id, "fulfilled_time_stamp": 20},
        )

    def rejected(
        self, request_id: str, error: Any, *, with_value: bool = True, **meta: Any
    ) -> Action:
        arg = meta.pop("arg", None) or query_arg()
        thunk = self.query if arg.type == "query" else self.mutation
        if with_value:
            return Action(
                thunk.rejected,
                payload=error,
                meta={"arg": arg, "request_id": request_id, "rejected_with_value": True, **meta},
            )
        meta = {"arg": arg, "request_id": request_id, **meta}
        return Action(thunk.rejected, meta=meta, error=error)


@pytest.fixture
def lifecycle(api: Api) -> Lifecycle:
    return Lifecycle(api)


@pytest.fixture
def initial(api: Api) -> ApiState:
    return api.reducer(None, INIT)


def run(api: Api, state: ApiState, *actions: Action) -> ApiState:
    for action in actions:
        state = api.reducer(state, action)
    return state


class TestQueryTransitions:
    """Tests for the query entry state machine."""

    def test_pending_creates_entry(self, api, lifecycle, initial) -> None:
        state = run(api, initial, lifecycle.pending("a"))
        entry = state.queries[KEY]
        assert entry.status is QueryStatus.PENDING
        assert entry.request_id == "a"
        assert entry.original_args == 1
        assert entry.endpoint_name == "get_post"
        assert entry.started_time_stamp == 10

    def test_pending_without_subscribe_does_not_create(self, api, lifecycle, initial) -> None:
        state = run(api, initial, lifecycle.pending("a", query_arg(subscribe=False)))
        assert KEY not in state.queries

    def test_fulfilled_stores_data(self, api, lifecycle, initial) -> None:
        state = run(api, initial, lifecycle.pending("a"), lifecycle.fulfilled("a", {"id": 1}))
        entry = state.queries[KEY]
        assert entry.status is QueryStatus.FULFILLED
        assert entry.data == {"id": 1}
        assert entry.error is None
        assert entry.fulfilled_time_stamp == 20

    def test_stale_fulfilled_is_dropped(self, api, lifecycle, initial) -> None:
        """A response for a superseded request id leaves the entry alone."""
        state = run(
            api,
            initial,
            lifecycle.pending("a"),
            lifecycle.pending("b"),
            lifecycle.fulfilled("b", "new"),
        )
        after = run(api, state, lifecycle.fulfilled("a", "old"))
        assert after is state
        assert after.queries[KEY].data == "new"

    def test_stale_rejected_is_dropped(self, api, lifecycle, initial) -> None:
        state = run(api, initial, lifecycle.pending("a"), lifecycle.pending("b"))
        after = run(api, state, lifecycle.rejected("a", {"status": 500}))
        assert after.queries[KEY].status is QueryStatus.PENDING

    def test_rejected_with_value_stores_payload(self, api, lifecycle, initial) -> None:
        state = run(api, initial, lifecycle.pending("a"), lifecycle.rejected("a", {"status": 404}))
        assert state.queries[KEY].status is QueryStatus.REJECTED
        assert state.queries[KEY].error == {"status": 404}

    def test_rejected_without_value_stores_serialized_error(self, api, lifecycle, initial) -> None:
        error = SerializedError("RuntimeError", "boom")
        state = run(
            api, initial, lifecycle.pending("a"), lifecycle.rejected("a", error, with_value=False)
        )
        assert state.queries[KEY].error == error

    def test_refetch_keeps_previous_data_while_pending(self, api, lifecycle, initial) -> None:
        state = run(
            api,
            initial,
            lifecycle.pending("a"),
            lifecycle.fulfilled("a", "data"),
            lifecycle.pending("b", query_arg(subscribe=False)),
        )
        assert state.queries[KEY].status is QueryStatus.PENDING
        assert state.queries[KEY].data == "data"

    def test_fulfilled_after_rejected_clears_error(self, api, lifecycle, initial) -> None:
        state = run(
            api,
            initial,
            lifecycle.pending("a"),
            lifecycle.rejected("a", "bad"),
            lifecycle.pending("b"),
            lifecycle.fulfilled("b", "good"),
        )
        assert state.queries[KEY].error is None
        assert state.queries[KEY].is_success

    def test_condition_rejection_leaves_entry(self, api, lifecycle, initial) -> None:
        state = run(api, initial, lifecycle.pending("a"))
        after = run(
            api,
            state,
            lifecycle.rejected("c", CONDITION_ERROR, with_value=False, condition=True),
        )
        assert after.queries is state.queries

    def test_remove_query_result(self, api, lifecycle, initial) -> None:
        state = run(api, initial, lifecycle.pending("a"), lifecycle.fulfilled("a", "x"))
        after = run(api, state, api.internal_actions.remove_query_result({"query_cache_key": KEY}))
        assert KEY not in after.queries
        assert KEY not in after.subscriptions
        assert after.provided == {}

    def test_unrelated_action_returns_same_state(self, api, initial) -> None:
        assert api.reducer(initial, Action("other/thing")) is initial


class TestMutationTransitions:
    """Tests for tracked mutation entries."""

    def arg(self, **kwargs: Any) -> MutationThunkArg:
        return MutationThunkArg("update_post", {"id": 1}, **kwargs)

    def test_entry_keyed_by_request_id(self, api, lifecycle, initial) -> None:
        arg = self.arg()
        state = run(
            api, initial, lifecycle.pending("m1", arg), lifecycle.fulfilled("m1", "ok", arg)
        )
        assert state.mutations["m1"].status is QueryStatus.FULFILLED
        assert state.mutations["m1"].data == "ok"

    def test_fixed_cache_key_shares_entry(self, api, lifecycle, initial) -> None:
        """The latest submission under a fixed key owns the entry."""
        arg = self.arg(fixed_cache_key="shared")
        state = run(
            api,
            initial,
            lifecycle.pending("m1", arg),
            lifecycle.pending("m2", arg),
            lifecycle.fulfilled("m1", "old", arg),
        )
        assert set(state.mutations) == {"shared"}
        assert state.mutations["shared"].request_id == "m2"
        assert state.mutations["shared"].status is QueryStatus.PENDING

    def test_untracked_mutation_is_not_stored(self, api, lifecycle, initial) -> None:
        arg = self.arg(track=False)
        state = run(api, initial, lifecycle.pending("m1", arg), lifecycle.fulfilled("m1", "x", arg))
        assert state.mutations == {}

    def test_remove_mutation_result(self, api, lifecycle, initial) -> None:
        arg = self.arg()
        state = run(api, initial, lifecycle.pending("m1", arg))
        after = run(api, state, api.internal_actions.remove_mutation_result({"request_id": "m1"}))
        assert after.mutations == {}


class TestInvalidationIndex:
    """Tests for the tag -> cache key index."""

    def test_fulfilled_registers_provided_tags(self, api, lifecycle, initial) -> None:
        state = run(api, initial, lifecycle.pending("a"), lifecycle.fulfilled("a", {"id": 1}))
        assert state.provided == {"Post": {"1": (KEY,)}}

    def test_refulfill_replaces_previous_tags(self, api, lifecycle, initial) -> None:
        """An entry only appears under the tags of its latest result."""
        api.enhance_endpoints(
            endpoints={"get_post": {"provides_tags": lambda r, e, a, m: [Tag("Post", r["id"])]}}
        )
        state = run(
            api,
            initial,
            lifecycle.pending("a"),
            lifecycle.fulfilled("a", {"id": 1}),
            lifecycle.pending("b"),
            lifecycle.fulfilled("b", {"id": 7}),
        )
        assert state.provided == {"Post": {"7": (KEY,)}}

    def test_rejected_with_value_provides(self, api, lifecycle, initial) -> None:
        state = run(api, initial, lifecycle.pending("a"), lifecycle.rejected("a", {"status": 404}))
        assert state.provided == {"Post": {"1": (KEY,)}}

    def test_stale_fulfilled_does_not_provide(self, api, lifecycle, initial) -> None:
        state = run(api, initial, lifecycle.pending("a"), lifecycle.pending("b"))
        after = run(api, state, lifecycle.fulfilled("a", {"id": 1}))
        assert after.provided == {}

    def test_tag_without_id_uses_internal_bucket(self) -> None:
        assert tag_bucket(None) == WITHOUT_ID
        assert tag_bucket(3) == tag_bucket("3") == "3"


class TestSubscriptions:
    """Tests for subscriber membership."""

    def test_pending_subscribes(self, api, lifecycle, initial) -> None:
        options = SubscriptionOptions(polling_interval=1000)
        state = run(api, initial, lifecycle.pending("a", query_arg(subscription_options=options)))
        assert state.subscriptions == {KEY: {"a": options}}

    def test_condition_rejection_subscribes(self, api, lifecycle, initial) -> None:
        state = run(
            api,
            initial,
            lifecycle.pending("a"),
            lifecycle.rejected("b", CONDITION_ERROR, with_value=False, condition=True),
        )
        assert set(state.subscriptions[KEY]) == {"a", "b"}

    def test_subscribe_then_unsubscribe_restores_map(self, api, lifecycle, initial) -> None:
        before = run(api, initial, lifecycle.pending("a"))
        state = run(
            api,
            before,
            lifecycle.rejected("b", CONDITION_ERROR, with_value=False, condition=True),
            api.internal_actions.unsubscribe_query_result(
                {"query_cache_key": KEY, "request_id": "b"}
            ),
        )
        assert state.subscriptions == before.subscriptions

    def test_last_unsubscribe_drops_key(self, api, lifecycle, initial) -> None:
        state = run(
            api,
            initial,
            lifecycle.pending("a"),
            api.internal_actions.unsubscribe_query_result(
                {"query_cache_key": KEY, "request_id": "a"}
            ),
        )
        assert state.subscriptions == {}

    def test_update_options_requires_existing_subscriber(self, api, lifecycle, initial) -> None:
        state = run(api, initial, lifecycle.pending("a"))
        options = SubscriptionOptions(polling_interval=5000)
        missing = api.internal_actions.update_subscription_options(
            {"query_cache_key": KEY, "request_id": "zzz", "options": options}
        )
        assert run(api, state, missing) is state

        present = api.internal_actions.update_subscription_options(
            {"query_cache_key": KEY, "request_id": "a", "options": options}
        )
        assert run(api, state, present).subscriptions[KEY]["a"] == options


class TestConfig:
    """Tests for config and reset handling."""

    def test_middleware_registered(self, api, initial) -> None:
        state = run(api, initial, api.internal_actions.middleware_registered(api.uid))
        assert state.config.middleware_registered is True

    def test_foreign_registration_is_a_conflict(self, api, initial) -> None:
        state = run(
            api,
            initial,
            api.internal_actions.middleware_registered(api.uid),
            api.internal_actions.middleware_registered("another-api"),
            api.internal_actions.middleware_registered(api.uid),
        )
        assert state.config.middleware_registered == "conflict"

    def test_environment_events(self, api, initial) -> None:
        actions = api.internal_actions
        state = run(api, initial, actions.on_offline(), actions.on_focus_lost())
        assert (state.config.online, state.config.focused) == (False, False)
        state = run(api, state, actions.on_online(), actions.on_focus())
        assert (state.config.online, state.config.focused) == (True, True)

    def test_reset_keeps_config(self, api, lifecycle, initial) -> None:
        state = run(
            api,
            initial,
            api.internal_actions.on_offline(),
            lifecycle.pending("a"),
            lifecycle.fulfilled("a", "x"),
            api.internal_actions.reset_api_state(),
        )
        assert state.queries == {}
        assert state.provided == {}
        assert state.subscriptions == {}
        assert state.config.online is False


class TestRehydrate:
    """Tests for rehydration merges."""

    def test_only_settled_entries_are_merged(self, api, initial) -> None:
        incoming = ApiState(
            queries={
                "get_post(1)": QuerySubState(
                    status=QueryStatus.FULFILLED,
                    endpoint_name="get_post",
                    data="x",
                    request_id="r1",
                ),
                "get_post(2)": QuerySubState(status=QueryStatus.PENDING, endpoint_name="get_post"),
            },
            mutations={
                "shared": MutationSubState(status=QueryStatus.FULFILLED, request_id="m1"),
                "m2": MutationSubState(status=QueryStatus.FULFILLED, request_id="m2"),
            },
            provided={"Post": {"1": ("get_post(1)",)}},
        )
        state = run(api, initial, api.util.rehydrate(incoming))
        assert set(state.queries) == {"get_post(1)"}
        assert set(state.mutations) == {"shared"}
        assert state.provided == {"Post": {"1": ("get_post(1)",)}}

    def test_in_flight_entry_is_not_overwritten(self, api, lifecycle, initial) -> None:
        incoming = ApiState(
            queries={
                KEY: QuerySubState(
                    status=QueryStatus.FULFILLED,
                    endpoint_name="get_post",
                    data="snapshot",
                    request_id="r-snapshot",
                ),
            },
            provided={"Post": {"1": (KEY,)}},
        )
        state = run(api, initial, lifecycle.pending("r-local"), api.util.rehydrate(incoming))
        assert state.queries[KEY].status is QueryStatus.PENDING
        assert state.queries[KEY].request_id == "r-local"
        assert state.provided == {}

        state = run(api, state, lifecycle.fulfilled("r-local", "fresh"))
        assert state.queries[KEY].status is QueryStatus.FULFILLED
        assert state.queries[KEY].data == "fresh"

    def test_rehydrate_keeps_local_config(self, api, initial) -> None:
        incoming = ApiState(config=replace(initial.config, online=False))
        state = run(api, initial, api.util.rehydrate(incoming))
        assert state.config.online is True

    def test_custom_extractor(self, api, backend) -> None:
        def extract(action: Action, reducer_path: str) -> ApiState | None:
            if action.type == "persist/REHYDRATE":
                return action.payload.get(reducer_path)
            return None

        api = create_api(
            base_query=backend,
            endpoints=lambda build: dict(api.definitions),
            tag_types=["Post"],
            extract_rehydration_info=extract,
        )
        incoming = ApiState(
            queries={"get_post(1)": QuerySubState(status=QueryStatus.REJECTED, error="e")}
        )
        state = run(api, api.reducer(None, INIT), Action("persist/REHYDRATE", {"api": incoming}))
        assert state.queries["get_post(1)"].error == "e"
