"""LLM insights backend client."""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from mcpauth.config import AppSettings

HTTPClientFactory = Callable[..., httpx.AsyncClient]


class InsightsBackendError(Exception):
    """Raised when the insights backend cannot be reached or answers garbage."""


@dataclass(frozen=True, slots=True)
class InsightsResponse:
    status_code: int
    body: Any


class InsightsClientProtocol(Protocol):
    async def forward(
        self,
        path: str,
        *,
        authorization: str,
        body: Any,
        user_id: str | None = None,
    ) -> InsightsResponse: ...


class InsightsClient(InsightsClientProtocol):
    def __init__(
        self,
        settings: AppSettings,
        *,
        http_client_factory: HTTPClientFactory = httpx.AsyncClient,
    ) -> None:
        self._settings = settings
        self._http_client_factory = http_client_factory

    async def forward(
        self,
        path: str,
        *,
        authorization: str,
        body: Any,
        user_id: str | None = None,
    ) -> InsightsResponse:
        headers: dict[str, str] = {"Authorization": authorization}
        if user_id:
            headers["X-User-ID"] = user_id

        try:
            async with self._http_client_factory(
                timeout=self._settings.insights_http_timeout_seconds
            ) as client:
                response = await client.post(
                    f"{self._settings.insights_backend_url}{path}",
                    headers=headers,
                    json=body,
                )
            data = response.json()
        except (httpx.RequestError, json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise InsightsBackendError(f"insights request to {path} failed") from exc

        return InsightsResponse(status_code=response.status_code, body=_as_json_value(data))


def _as_json_value(data: Any) -> Any:
    if isinstance(data, Mapping):
        return dict(data)
    return data
