"""HTTP base query backed by httpx."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import Any

import httpx

from querykit.executor import BaseQueryApi
from querykit.results import Err, Ok

_BODYLESS_METHODS = frozenset({"GET", "HEAD"})


def _parse_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    if "json" in response.headers.get("content-type", ""):
        return response.json()
    return response.text


def fetch_base_query(
    *,
    base_url: str = "",
    headers: Mapping[str, str] | None = None,
    timeout: float = 30.0,
    client: httpx.AsyncClient | None = None,
) -> Any:
    """Create a base query issuing HTTP requests.

    The request descriptor is a URL string or a mapping with ``url`` and
    optional ``method``, ``params``, ``body`` (sent as JSON) and ``headers``.

    Outcomes:
        2xx              -> Ok(parsed body, meta)
        other status     -> Err({"status": code, "data": parsed body}, meta)
        undecodable JSON -> Err({"status": "PARSING_ERROR", ...}, meta)
        transport error  -> Err({"status": "FETCH_ERROR", "error": str}, None)

    ``meta`` is ``{"request": httpx.Request, "response": httpx.Response}``.
    Setting the api signal cancels the in-flight request.
    """
    default_headers = dict(headers or {})

    async def send(request: Mapping[str, Any]) -> httpx.Response:
        method = str(request.get("method", "GET")).upper()
        kwargs: dict[str, Any] = {
            "params": request.get("params"),
            "headers": {**default_headers, **dict(request.get("headers") or {})},
        }
        if method not in _BODYLESS_METHODS and request.get("body") is not None:
            kwargs["json"] = request["body"]
        if client is not None:
            return await client.request(method, request["url"], **kwargs)
        async with httpx.AsyncClient(base_url=base_url, timeout=timeout) as session:
            return await session.request(method, request["url"], **kwargs)

    async def base_query(
        request: str | Mapping[str, Any],
        api: BaseQueryApi,
        extra_options: Any,
    ) -> Ok[Any] | Err[Any]:
        if isinstance(request, str):
            request = {"url": request}

        sending = asyncio.ensure_future(send(request))
        aborted = asyncio.ensure_future(api.signal.wait())
        try:
            done, _ = await asyncio.wait({sending, aborted}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            aborted.cancel()
        if api.signal.is_set() or sending not in done:
            sending.cancel()
            return Err({"status": "FETCH_ERROR", "error": "Aborted"})

        try:
            response = sending.result()
        except httpx.HTTPError as exc:
            return Err({"status": "FETCH_ERROR", "error": str(exc)})

        meta = {"request": response.request, "response": response}
        try:
            data = _parse_body(response)
        except ValueError as exc:
            return Err(
                {
                    "status": "PARSING_ERROR",
                    "original_status": response.status_code,
                    "data": response.text,
                    "error": str(exc),
                },
                meta,
            )
        if response.is_success:
            return Ok(data, meta)
        return Err({"status": response.status_code, "data": data}, meta)

    return base_query


__all__ = ["fetch_base_query"]
