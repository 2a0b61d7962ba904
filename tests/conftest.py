"""Shared pytest fixtures."""

import asyncio
from typing import Any

import pytest

from querykit import (
    Action,
    AsyncMemoryAdapter,
    Err,
    Ok,
    Store,
    Tag,
    combine_reducers,
    create_api,
)
from querykit.api import Api


class FakeBackend:
    """Base query over an in-memory post table.

    Requests are tuples like ``("get", 1)``. Clear ``release`` to hold every
    request until it is set again.
    """

    def __init__(self) -> None:
        self.posts: dict[int, dict[str, Any]] = {
            1: {"id": 1, "title": "first"},
            2: {"id": 2, "title": "second"},
        }
        self.calls: list[tuple[Any, ...]] = []
        self.release = asyncio.Event()
        self.release.set()

    async def __call__(self, request: tuple[Any, ...], api: Any, extra_options: Any) -> Any:
        self.calls.append(request)
        await self.release.wait()
        op, *rest = request
        if op == "get":
            post = self.posts.get(rest[0])
            return Ok(dict(post)) if post else Err({"status": 404})
        if op == "list":
            return Ok([dict(post) for post in self.posts.values()])
        if op == "update":
            post_id, changes = rest
            if post_id not in self.posts:
                return Err({"status": 404})
            self.posts[post_id] = {**self.posts[post_id], **changes}
            return Ok(dict(self.posts[post_id]))
        if op == "delete":
            self.posts.pop(rest[0], None)
            return Ok({"id": rest[0]})
        if op == "boom":
            raise RuntimeError("backend exploded")
        return "not a result"


class Recorder:
    """Middleware keeping every action that reaches it."""

    def __init__(self) -> None:
        self.actions: list[Action] = []

    def __call__(self, store_api: Any) -> Any:
        def wrap(next_dispatch: Any) -> Any:
            def dispatch(action: Any) -> Any:
                self.actions.append(action)
                return next_dispatch(action)

            return dispatch

        return wrap

    def of_type(self, action_type: str) -> list[Action]:
        return [action for action in self.actions if action.type == action_type]


def post_endpoints(build: Any) -> dict[str, Any]:
    return {
        "get_post": build.query(
            query=lambda post_id: ("get", post_id),
            provides_tags=lambda result, error, post_id, meta: [Tag("Post", post_id)],
        ),
        "list_posts": build.query(
            query=lambda _: ("list",),
            provides_tags=lambda result, error, arg, meta: [
                Tag("Post", "LIST"),
                *(Tag("Post", post["id"]) for post in result or []),
            ],
        ),
        "update_post": build.mutation(
            query=lambda arg: ("update", arg["id"], arg["changes"]),
            invalidates_tags=lambda result, error, arg, meta: [Tag("Post", arg["id"])],
        ),
        "delete_post": build.mutation(
            query=lambda post_id: ("delete", post_id),
            invalidates_tags=lambda result, error, post_id, meta: [Tag("Post", post_id)],
        ),
        "explode": build.query(query=lambda _: ("boom",)),
        "wrong_shape": build.query(query=lambda _: ("shape",)),
    }


@pytest.fixture
def backend() -> FakeBackend:
    """Create a fresh FakeBackend for each test."""
    return FakeBackend()


@pytest.fixture
def api(backend: FakeBackend) -> Api:
    """Create an api over the fake backend."""
    return create_api(base_query=backend, endpoints=post_endpoints, tag_types=["Post"])


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def store(api: Api, recorder: Recorder) -> Store:
    """Create a store with the api reducer and middleware installed."""
    return Store(
        combine_reducers({api.reducer_path: api.reducer}),
        middleware=[recorder, api.middleware],
    )


@pytest.fixture
def async_adapter() -> AsyncMemoryAdapter:
    """Create a fresh AsyncMemoryAdapter for each test."""
    return AsyncMemoryAdapter()
