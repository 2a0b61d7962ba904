"""Endpoint definitions and tag descriptions."""

from __future__ import annotations

import enum
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, ClassVar, Union

from querykit.results import QueryReturnValue
from querykit.types import Tag, TagDescription

# A static list of tags, or a callable (result, error, arg, meta) -> tags
ResultDescription = Union[
    Sequence[TagDescription],
    Callable[[Any, Any, Any, Any], Union[Sequence[TagDescription], None]],
    None,
]

BaseQueryFn = Callable[[Any, Any, Any], Awaitable[QueryReturnValue]]
QueryFn = Callable[
    [Any, Any, Any, Callable[[Any], Awaitable[QueryReturnValue]]], Awaitable[QueryReturnValue]
]
AssertTagType = Callable[[Tag], Tag]


class DefinitionType(str, enum.Enum):
    QUERY = "query"
    MUTATION = "mutation"


@dataclass
class EndpointDefinition:
    """Shared fields of query and mutation endpoints.

    Exactly one of ``query`` (build a request descriptor for the base query)
    or ``query_fn`` (custom resolver returning Ok/Err) must be given.
    """

    query: Callable[[Any], Any] | None = None
    query_fn: QueryFn | None = None
    transform_response: Callable[[Any, Any, Any], Any] | None = None
    extra_options: Any = None

    type: ClassVar[DefinitionType]

    def __post_init__(self) -> None:
        if (self.query is None) == (self.query_fn is None):
            raise ValueError("Endpoint needs exactly one of `query` or `query_fn`")


@dataclass
class QueryDefinition(EndpointDefinition):
    provides_tags: ResultDescription = None
    structural_sharing: bool = True

    type: ClassVar[DefinitionType] = DefinitionType.QUERY


@dataclass
class MutationDefinition(EndpointDefinition):
    invalidates_tags: ResultDescription = None

    type: ClassVar[DefinitionType] = DefinitionType.MUTATION


class EndpointBuilder:
    """Passed to the ``endpoints`` callable of ``create_api``.

    Usage:
        api = create_api(
            base_query=fetch_base_query(base_url="https://example.test"),
            endpoints=lambda build: {
                "get_post": build.query(
                    query=lambda id: f"posts/{id}",
                    provides_tags=lambda result, error, id, meta: [Tag("Post", id)],
                ),
                "delete_post": build.mutation(
                    query=lambda id: {"url": f"posts/{id}", "method": "DELETE"},
                    invalidates_tags=lambda result, error, id, meta: [Tag("Post", id)],
                ),
            },
        )
    """

    def query(self, **kwargs: Any) -> QueryDefinition:
        return QueryDefinition(**kwargs)

    def mutation(self, **kwargs: Any) -> MutationDefinition:
        return MutationDefinition(**kwargs)


def expand_tag_description(description: TagDescription) -> Tag:
    """Normalize ``"Post"`` to ``Tag("Post")``."""
    if isinstance(description, Tag):
        return description
    if isinstance(description, str):
        return Tag(description)
    raise TypeError(f"Expected Tag or str, got {type(description)}")


def calculate_provided_by(
    description: ResultDescription,
    result: Any,
    error: Any,
    arg: Any,
    meta: Any,
    assert_tag_type: AssertTagType,
) -> list[Tag]:
    """Resolve a tag description against one request outcome."""
    if callable(description):
        described = description(result, error, arg, meta) or []
    else:
        described = description or []
    return [
        assert_tag_type(expand_tag_description(tag))
        for tag in described
        if tag is not None
    ]
