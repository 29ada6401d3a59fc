"""HTTP clients the client-side flow uses to reach the BFF and the resource API."""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from mcpauth.client.session import SessionService, SessionStatus
from mcpauth.config import AppSettings

logger = logging.getLogger(__name__)

HTTPClientFactory = Callable[..., httpx.AsyncClient]

TOKEN_PATH = "/api/auth/token"
LINK_IDENTITY_PATH = "/api/auth/link-supabase"


class BffError(Exception):
    """Base exception for calls made by the client-side flow."""


class BffUnavailableError(BffError):
    """Raised when the remote endpoint cannot be reached."""


class BffRequestError(BffError):
    """Raised when the remote endpoint answers with an error."""

    def __init__(self, status_code: int, message: str, *, error: str | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error = error


class SessionNotAuthenticatedError(BffError):
    """Raised when a resource call is attempted without a valid session."""


class SessionExpiredError(SessionNotAuthenticatedError):
    """Raised when the session's access token is past its expiry."""


@dataclass(frozen=True, slots=True)
class ProviderIdentity:
    """Identity asserted by the passkey provider's own session."""

    subject: str
    email: str


class TokenExchanger(Protocol):
    async def exchange_code(self, *, code: str, code_verifier: str) -> Mapping[str, Any]: ...


class IdentityLinkClient(Protocol):
    async def link_identity(
        self,
        *,
        access_token: str,
        identity: ProviderIdentity,
        current_user_id: str | None = None,
    ) -> str: ...


class BffClient:
    def __init__(
        self,
        settings: AppSettings,
        *,
        http_client_factory: HTTPClientFactory = httpx.AsyncClient,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._settings = settings
        self._http_client_factory = http_client_factory
        self._timeout_seconds = timeout_seconds

    async def exchange_code(self, *, code: str, code_verifier: str) -> Mapping[str, Any]:
        response = await self._post(
            TOKEN_PATH,
            json_body={"code": code, "codeVerifier": code_verifier},
        )
        data = _json_body(response)
        if not isinstance(data, Mapping):
            raise BffRequestError(
                response.status_code,
                f"Received non-JSON response ({response.status_code}) "
                "from token exchange endpoint.",
            )

        if response.is_error:
            error = _optional_str(data.get("error"))
            message = (
                _optional_str(data.get("error_description"))
                or error
                or f"Token exchange failed with status {response.status_code}"
            )
            raise BffRequestError(response.status_code, message, error=error)
        return data

    async def link_identity(
        self,
        *,
        access_token: str,
        identity: ProviderIdentity,
        current_user_id: str | None = None,
    ) -> str:
        body: dict[str, Any] = {"hankoUserId": identity.subject, "hankoEmail": identity.email}
        if current_user_id:
            body["currentSupabaseUserId"] = current_user_id

        response = await self._post(
            LINK_IDENTITY_PATH,
            json_body=body,
            headers={"Authorization": f"Bearer {access_token}"},
        )
        data = _json_body(response)
        payload: Mapping[str, Any] = data if isinstance(data, Mapping) else {}

        if response.is_error:
            error = _optional_str(payload.get("error"))
            message = (
                _optional_str(payload.get("message"))
                or error
                or f"Identity linking failed with status {response.status_code}"
            )
            raise BffRequestError(response.status_code, message, error=error)

        user_id = _optional_str(payload.get("supabaseUserId"))
        if user_id is None:
            raise BffRequestError(
                response.status_code,
                "Linking response did not include a user id.",
            )
        try:
            uuid.UUID(user_id)
        except ValueError as exc:
            raise BffRequestError(
                response.status_code,
                "Linking response user id is malformed.",
            ) from exc
        return user_id

    async def _post(
        self,
        path: str,
        *,
        json_body: Mapping[str, Any],
        headers: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        try:
            async with self._http_client_factory(timeout=self._timeout_seconds) as client:
                return await client.post(
                    f"{self._settings.bff_base_url}{path}",
                    json=dict(json_body),
                    headers=dict(headers or {}),
                )
        except httpx.RequestError as exc:
            raise BffUnavailableError(f"request to {path} failed: {exc}") from exc


@dataclass(frozen=True, slots=True)
class ResourceResponse:
    status_code: int
    body: Any


class ResourceApiClient:
    """Calls the protected resource API with the session's access token."""

    def __init__(
        self,
        settings: AppSettings,
        session: SessionService,
        *,
        http_client_factory: HTTPClientFactory = httpx.AsyncClient,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._settings = settings
        self._session = session
        self._http_client_factory = http_client_factory
        self._timeout_seconds = timeout_seconds

    async def fetch(
        self,
        path: str,
        *,
        method: str = "GET",
        json_body: Mapping[str, Any] | None = None,
    ) -> ResourceResponse:
        state = self._session.state
        if state.status is not SessionStatus.AUTHENTICATED or state.access_token is None:
            raise SessionNotAuthenticatedError("Not authenticated or access token missing.")
        if self._session.is_expired():
            self._session.fail("Access token expired.")
            raise SessionExpiredError("Access token expired. Please re-authenticate.")

        normalized_path = path if path.startswith("/") else f"/{path}"
        try:
            async with self._http_client_factory(timeout=self._timeout_seconds) as client:
                response = await client.request(
                    method,
                    f"{self._settings.resource_api_url}{normalized_path}",
                    headers={"Authorization": f"Bearer {state.access_token}"},
                    json=dict(json_body) if json_body is not None else None,
                )
        except httpx.RequestError as exc:
            raise BffUnavailableError(
                f"resource request to {normalized_path} failed: {exc}"
            ) from exc

        data = _json_body(response)
        if response.is_error:
            payload: Mapping[str, Any] = data if isinstance(data, Mapping) else {}
            detail = (
                _optional_str(payload.get("error"))
                or _optional_str(payload.get("message"))
                or response.reason_phrase
            )
            logger.warning("resource API %s %s failed: %s", method, normalized_path, detail)
            raise BffRequestError(
                response.status_code,
                f"API Error ({response.status_code}): {detail}",
            )
        return ResourceResponse(status_code=response.status_code, body=data)


def _json_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None


def _optional_str(value: Any) -> str | None:
    if isinstance(value, str) and value:
        return value
    return None
