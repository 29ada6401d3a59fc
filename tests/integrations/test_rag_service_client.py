from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from dataclasses import replace
from typing import Any

import httpx
import pytest

from mcpauth.config import AppSettings
from mcpauth.integrations.rag_service import (
    RagServiceClient,
    RagServiceConfigError,
    RagServiceResponseError,
    RagServiceUnavailableError,
)

Handler = Callable[[httpx.Request], httpx.Response]


def _client(settings: AppSettings, handler: Handler) -> RagServiceClient:
    def _factory(**kwargs: Any) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler), **kwargs)

    return RagServiceClient(settings, http_client_factory=_factory)


def test_get_moves_user_id_into_query(test_settings: AppSettings) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[{"id": "src-1"}])

    result = asyncio.run(
        _client(test_settings, handler).request("/sources", "GET", {"userId": "user 1"})
    )

    assert result == [{"id": "src-1"}]
    request = seen[0]
    assert request.url.path == "/api/v1/sources"
    assert request.url.params["userId"] == "user 1"
    assert request.headers["x-internal-api-key"] == "internal-rag-key"
    assert request.content == b""


def test_post_sends_json_body(test_settings: AppSettings) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201, json={"id": "src-2"})

    result = asyncio.run(
        _client(test_settings, handler).request(
            "/sources",
            "POST",
            {"sourceType": "notes", "userId": "user-1"},
        )
    )

    assert result == {"id": "src-2"}
    assert json.loads(seen[0].content) == {"sourceType": "notes", "userId": "user-1"}
    assert "userId" not in seen[0].url.params


def test_no_content_returns_none(test_settings: AppSettings) -> None:
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(204)

    result = asyncio.run(
        _client(test_settings, handler).request("/sources/src-1", "DELETE", {"userId": "u"})
    )

    assert result is None


def test_error_status_carries_upstream_message(test_settings: AppSettings) -> None:
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"message": "Not Found"})

    with pytest.raises(RagServiceResponseError) as exc_info:
        asyncio.run(_client(test_settings, handler).request("/sources/x", "GET", None))

    assert exc_info.value.status_code == 404
    assert str(exc_info.value) == "RAG Service Error (404): Not Found"


def test_error_status_without_json_uses_reason_phrase(test_settings: AppSettings) -> None:
    def handler(_: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="boom")

    with pytest.raises(RagServiceResponseError, match="Internal Server Error"):
        asyncio.run(_client(test_settings, handler).request("/query", "POST", {"q": 1}))


def test_transport_failure_is_unavailable(test_settings: AppSettings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(RagServiceUnavailableError):
        asyncio.run(_client(test_settings, handler).request("/query", "POST", {}))


def test_missing_configuration_is_rejected(test_settings: AppSettings) -> None:
    def handler(_: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    settings = replace(test_settings, rag_service_api_key="")

    with pytest.raises(RagServiceConfigError):
        asyncio.run(_client(settings, handler).request("/sources", "GET", None))
