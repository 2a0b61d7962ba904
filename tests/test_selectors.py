"""Tests for selectors and status flags."""

import logging

import pytest

from querykit import SKIP, InvalidatedEntry, MutationId, QueryStatus, QuerySubState, Tag
from querykit.store import INIT
from querykit.types import MutationSubState, get_request_status_flags


class TestStatusFlags:
    """Exactly one flag is set for every status."""

    @pytest.mark.parametrize("status", list(QueryStatus))
    def test_flags_are_exclusive(self, status: QueryStatus) -> None:
        flags = get_request_status_flags(status)
        values = [flags.is_uninitialized, flags.is_loading, flags.is_success, flags.is_error]
        assert values.count(True) == 1

    def test_substate_flags_follow_status(self) -> None:
        assert QuerySubState().is_uninitialized
        assert QuerySubState(status=QueryStatus.PENDING).is_loading
        assert MutationSubState(status=QueryStatus.REJECTED).is_error


class TestQuerySelector:
    """Tests for endpoint.select(arg)."""

    def test_missing_entry_is_uninitialized(self, api) -> None:
        root = {"api": api.reducer(None, INIT)}
        assert api.endpoints["get_post"].select(1)(root).is_uninitialized

    def test_skip_returns_default(self, api) -> None:
        root = {"api": api.reducer(None, INIT)}
        substate = api.endpoints["get_post"].select(SKIP)(root)
        assert substate.status is QueryStatus.UNINITIALIZED
        assert substate.data is None

    async def test_selects_entry_by_value_equal_args(self, api, store) -> None:
        await store.dispatch(api.endpoints["get_post"].initiate(1))
        substate = api.endpoints["get_post"].select(1)(store.get_state())
        assert substate.is_success
        assert substate.data == {"id": 1, "title": "first"}

    def test_missing_reducer_warns_once(self, api, caplog) -> None:
        select = api.endpoints["get_post"].select(1)
        with caplog.at_level(logging.WARNING, logger="querykit.selectors"):
            assert select({}).is_uninitialized
            assert select({}).is_uninitialized
        warnings = [r for r in caplog.records if "forget to add the reducer" in r.getMessage()]
        assert len(warnings) == 1


class TestMutationSelector:
    """Tests for mutation selection by id."""

    async def test_by_request_id_and_fixed_key(self, api, store) -> None:
        update = api.endpoints["update_post"]
        plain = store.dispatch(update.initiate({"id": 1, "changes": {"title": "a"}}))
        fixed = store.dispatch(
            update.initiate({"id": 2, "changes": {"title": "b"}}, fixed_cache_key="edit")
        )
        await plain
        await fixed

        root = store.get_state()
        assert update.select(plain.request_id)(root).data == {"id": 1, "title": "a"}
        assert update.select(MutationId(request_id=plain.request_id))(root).is_success
        assert update.select(MutationId(fixed_cache_key="edit"))(root).data["title"] == "b"

    def test_skip_returns_default(self, api) -> None:
        root = {"api": api.reducer(None, INIT)}
        assert api.endpoints["update_post"].select(SKIP)(root).is_uninitialized


class TestSelectInvalidatedBy:
    """Tests for util.select_invalidated_by."""

    async def test_tag_with_id(self, api, store) -> None:
        await store.dispatch(api.endpoints["get_post"].initiate(1))
        await store.dispatch(api.endpoints["get_post"].initiate(2))
        entries = api.util.select_invalidated_by(store.get_state(), [Tag("Post", 1)])
        assert entries == [InvalidatedEntry("get_post", 1, "get_post(1)")]

    async def test_tag_without_id_matches_every_id(self, api, store) -> None:
        await store.dispatch(api.endpoints["get_post"].initiate(1))
        await store.dispatch(api.endpoints["list_posts"].initiate(None))
        entries = api.util.select_invalidated_by(store.get_state(), ["Post"])
        assert {entry.query_cache_key for entry in entries} == {"get_post(1)", "list_posts(null)"}

    async def test_unknown_tag_matches_nothing(self, api, store) -> None:
        await store.dispatch(api.endpoints["get_post"].initiate(1))
        assert api.util.select_invalidated_by(store.get_state(), [Tag("User", 1)]) == []
