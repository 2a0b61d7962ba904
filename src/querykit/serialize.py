"""Cache key serialization."""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from querykit.types import SKIP, QueryCacheKey

if TYPE_CHECKING:
    from querykit.definitions import EndpointDefinition

SerializeQueryArgs = Callable[[str, Any, "EndpointDefinition | None"], QueryCacheKey]


def default_serialize_query_args(
    endpoint_name: str,
    query_args: Any,
    endpoint_definition: EndpointDefinition | None = None,
) -> QueryCacheKey:
    """Serialize endpoint name and arguments to a stable cache key.

    Mapping keys are sorted, so arguments equal by value produce equal keys:

        default_serialize_query_args("getPost", {"id": 1, "full": True})
        # 'getPost({"full":true,"id":1})'

    Raises TypeError for arguments that are not JSON-compatible.
    """
    _ = endpoint_definition  # Available to custom serializers
    if query_args is SKIP:
        return f"{endpoint_name}(skip)"
    encoded = json.dumps(query_args, sort_keys=True, separators=(",", ":"))
    return f"{endpoint_name}({encoded})"
