"""Retrieval (RAG) service client used by the proxy routes."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Mapping
from typing import Any, Literal, Protocol
from urllib.parse import quote

import httpx

from mcpauth.config import AppSettings

logger = logging.getLogger(__name__)

HTTPClientFactory = Callable[..., httpx.AsyncClient]
RagMethod = Literal["GET", "POST", "PUT", "DELETE", "PATCH"]

_BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})
_QUERY_METHODS = frozenset({"GET", "DELETE"})


class RagServiceError(Exception):
    """Base RAG service client exception."""


class RagServiceConfigError(RagServiceError):
    """Raised when the RAG service URL or API key is not configured."""


class RagServiceUnavailableError(RagServiceError):
    """Raised when the RAG service cannot be reached or returns garbage."""


class RagServiceResponseError(RagServiceError):
    """Raised when the RAG service answers with an error status."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"RAG Service Error ({status_code}): {message}")
        self.status_code = status_code
        self.upstream_message = message


class RagServiceClientProtocol(Protocol):
    async def request(
        self,
        endpoint: str,
        method: RagMethod,
        body: Mapping[str, Any] | None = None,
    ) -> Any: ...


class RagServiceClient(RagServiceClientProtocol):
    def __init__(
        self,
        settings: AppSettings,
        *,
        http_client_factory: HTTPClientFactory = httpx.AsyncClient,
    ) -> None:
        self._settings = settings
        self._http_client_factory = http_client_factory

    async def request(
        self,
        endpoint: str,
        method: RagMethod,
        body: Mapping[str, Any] | None = None,
    ) -> Any:
        if not self._settings.rag_service_url:
            raise RagServiceConfigError("RAG service URL is not configured.")
        if not self._settings.rag_service_api_key:
            raise RagServiceConfigError("RAG service API key is not configured.")

        url = f"{self._settings.rag_service_url}/api/v1{endpoint}"
        headers = {"X-Internal-API-Key": self._settings.rag_service_api_key}
        json_body: dict[str, Any] | None = None

        if body is not None and method in _QUERY_METHODS:
            # GET/DELETE carry the user id as a query parameter, never a body.
            user_id = body.get("userId")
            if user_id:
                separator = "&" if "?" in url else "?"
                url = f"{url}{separator}userId={quote(str(user_id), safe='')}"
        elif body is not None and method in _BODY_METHODS:
            json_body = dict(body)

        logger.debug("forwarding %s %s to RAG service", method, endpoint)
        try:
            async with self._http_client_factory(
                timeout=self._settings.rag_service_http_timeout_seconds
            ) as client:
                response = await client.request(method, url, headers=headers, json=json_body)
        except httpx.RequestError as exc:
            raise RagServiceUnavailableError(
                f"Failed to fetch from RAG service: {exc}"
            ) from exc

        if response.status_code >= 400:
            message = _error_message(response)
            logger.warning(
                "RAG service returned status=%s for %s %s: %s",
                response.status_code,
                method,
                endpoint,
                message,
            )
            raise RagServiceResponseError(response.status_code, message)

        if response.status_code == 204:
            return None

        try:
            return response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise RagServiceUnavailableError(
                "Failed to parse successful response from RAG service."
            ) from exc


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        data = None

    if isinstance(data, Mapping):
        for key in ("message", "error"):
            value = data.get(key)
            if isinstance(value, str) and value:
                return value
    return response.reason_phrase or f"HTTP error! Status: {response.status_code}"
