"""Authorization server client: token exchange and token introspection."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from mcpauth.config import AppSettings

logger = logging.getLogger(__name__)

HTTPClientFactory = Callable[..., httpx.AsyncClient]

# Custom claim the authorization server embeds with the passkey provider's user id.
SUBJECT_CLAIM = "hankoUserId"


class AuthServerError(Exception):
    """Base authorization server client exception."""


class AuthServerUnavailableError(AuthServerError):
    """Raised when the authorization server cannot be reached."""


class AuthServerResponseError(AuthServerError):
    """Raised when the authorization server returns a malformed response."""


@dataclass(frozen=True, slots=True)
class TokenSuccess:
    access_token: str
    token_type: str = "Bearer"
    expires_in: int | None = None
    refresh_token: str | None = None
    scope: str | None = None
    payload: Mapping[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        body = dict(self.payload)
        body["access_token"] = self.access_token
        body["token_type"] = self.token_type
        if self.expires_in is not None:
            body["expires_in"] = self.expires_in
        else:
            # Upstream sent a lifetime that is not a usable integer.
            body.pop("expires_in", None)
        if self.refresh_token is not None:
            body["refresh_token"] = self.refresh_token
        if self.scope is not None:
            body["scope"] = self.scope
        return body


@dataclass(frozen=True, slots=True)
class TokenError:
    error: str
    error_description: str | None = None
    status_code: int = 400

    def to_payload(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.error}
        if self.error_description is not None:
            body["error_description"] = self.error_description
        return body


type TokenExchangeResult = TokenSuccess | TokenError


@dataclass(frozen=True, slots=True)
class IntrospectionActive:
    subject: str | None
    claims: Mapping[str, Any] = field(default_factory=dict)

    @property
    def verified_subject(self) -> str | None:
        custom_subject = _coerce_optional_str(self.claims.get(SUBJECT_CLAIM))
        return custom_subject or self.subject


@dataclass(frozen=True, slots=True)
class IntrospectionInactive:
    status_code: int
    reason: str


type IntrospectionResult = IntrospectionActive | IntrospectionInactive


class AuthServerClientProtocol(Protocol):
    async def exchange_code_for_tokens(
        self,
        *,
        code: str,
        code_verifier: str,
        redirect_uri: str,
    ) -> TokenExchangeResult: ...

    async def introspect_token(self, *, token: str) -> IntrospectionResult: ...


class AuthServerClient(AuthServerClientProtocol):
    def __init__(
        self,
        settings: AppSettings,
        *,
        http_client_factory: HTTPClientFactory = httpx.AsyncClient,
    ) -> None:
        self._settings = settings
        self._http_client_factory = http_client_factory

    async def exchange_code_for_tokens(
        self,
        *,
        code: str,
        code_verifier: str,
        redirect_uri: str,
    ) -> TokenExchangeResult:
        # Public client: PKCE replaces the client secret.
        payload = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "client_id": self._settings.oauth_client_id,
            "code_verifier": code_verifier,
        }
        logger.info(
            "exchanging authorization code at %s client_id=%s redirect_uri=%s",
            self._settings.token_url,
            self._settings.oauth_client_id,
            redirect_uri,
        )

        response = await self._post_form(
            self._settings.token_url,
            payload,
            failure_message="token exchange request failed",
        )
        data = _json_object(response)
        return parse_token_response(status_code=response.status_code, data=data)

    async def introspect_token(self, *, token: str) -> IntrospectionResult:
        response = await self._post_form(
            self._settings.introspection_url,
            {"token": token},
            failure_message="token introspection request failed",
        )
        data = _json_object(response)
        return parse_introspection_response(status_code=response.status_code, data=data)

    async def _post_form(
        self,
        url: str,
        payload: Mapping[str, str],
        *,
        failure_message: str,
    ) -> httpx.Response:
        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/json",
        }
        try:
            async with self._http_client_factory(
                timeout=self._settings.auth_server_http_timeout_seconds
            ) as client:
                return await client.post(url, data=dict(payload), headers=headers)
        except httpx.RequestError as exc:
            raise AuthServerUnavailableError(f"{failure_message}: {exc}") from exc


def parse_token_response(*, status_code: int, data: Mapping[str, Any]) -> TokenExchangeResult:
    is_success_status = 200 <= status_code < 300
    if not is_success_status or "error" in data:
        error = _coerce_optional_str(data.get("error")) or "unknown_error"
        return TokenError(
            error=error,
            error_description=_coerce_optional_str(data.get("error_description")),
            status_code=status_code if not is_success_status else 400,
        )

    access_token = data.get("access_token")
    if not isinstance(access_token, str) or not access_token:
        raise AuthServerResponseError("token response missing access_token")

    refresh_token = data.get("refresh_token")
    if refresh_token is not None and not isinstance(refresh_token, str):
        raise AuthServerResponseError("token response has invalid refresh_token")

    return TokenSuccess(
        access_token=access_token,
        token_type=_coerce_optional_str(data.get("token_type")) or "Bearer",
        expires_in=_coerce_optional_int(data.get("expires_in")),
        refresh_token=refresh_token,
        scope=_coerce_optional_str(data.get("scope")),
        payload=dict(data),
    )


def parse_introspection_response(
    *, status_code: int, data: Mapping[str, Any]
) -> IntrospectionResult:
    if status_code >= 400:
        return IntrospectionInactive(
            status_code=status_code,
            reason="Token introspection failed.",
        )

    if data.get("active") is not True:
        return IntrospectionInactive(
            status_code=status_code,
            reason="Token is inactive or invalid.",
        )

    return IntrospectionActive(
        subject=_coerce_optional_str(data.get("sub")),
        claims=dict(data),
    )


def _json_object(response: httpx.Response) -> Mapping[str, Any]:
    try:
        data = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise AuthServerResponseError("upstream response is not valid JSON") from exc

    if not isinstance(data, Mapping):
        raise AuthServerResponseError("upstream response root must be a JSON object")
    return data


def _coerce_optional_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, int):
        return value

    if isinstance(value, float) and value.is_integer():
        return int(value)

    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return None

    return None


def _coerce_optional_str(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return None
