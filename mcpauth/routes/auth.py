"""OAuth token exchange and identity linking API routes."""

from __future__ import annotations

import json
import logging
import uuid
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from sqlalchemy.orm import Session

from mcpauth.config import AppSettings
from mcpauth.dependencies import (
    get_app_settings,
    get_auth_server_client,
    get_bearer_token,
    get_db_session,
)
from mcpauth.integrations.auth_server import (
    AuthServerClientProtocol,
    AuthServerError,
    AuthServerResponseError,
    AuthServerUnavailableError,
    TokenError,
)
from mcpauth.repositories.audit_events import AuditEventRepository
from mcpauth.repositories.users import UserRepository
from mcpauth.services.identity_link import (
    IdentityLinker,
    IdentityMismatchError,
    InactiveTokenError,
    MissingVerifiedSubjectError,
    UserLinkingError,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])
SettingsDep = Annotated[AppSettings, Depends(get_app_settings)]
DbSessionDep = Annotated[Session, Depends(get_db_session)]
AuthServerClientDep = Annotated[AuthServerClientProtocol, Depends(get_auth_server_client)]

_NO_STORE_HEADERS = {"Cache-Control": "no-store", "Pragma": "no-cache"}


class TokenExchangePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    code: str | None = None
    code_verifier: str | None = Field(default=None, alias="codeVerifier")

    @field_validator("code", "code_verifier")
    @classmethod
    def _normalize_optional_text(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        return normalized or None


class LinkIdentityPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    hanko_user_id: str | None = Field(default=None, alias="hankoUserId")
    hanko_email: str | None = Field(default=None, alias="hankoEmail")
    current_supabase_user_id: uuid.UUID | None = Field(
        default=None, alias="currentSupabaseUserId"
    )

    @field_validator("hanko_user_id", "hanko_email", mode="before")
    @classmethod
    def _normalize_optional_text(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip() or None
        return value

    @field_validator("current_supabase_user_id", mode="before")
    @classmethod
    def _blank_user_id_is_absent(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


@router.post("/api/auth/token")
async def api_auth_token(
    request: Request,
    settings: SettingsDep,
    auth_client: AuthServerClientDep,
    db_session: DbSessionDep,
) -> JSONResponse:
    payload = await _parse_payload(request, TokenExchangePayload)
    if payload is None:
        return _oauth_error_response(
            status_code=400,
            error="invalid_request",
            description="Invalid request body. JSON expected.",
        )

    if not payload.code or not payload.code_verifier:
        return _oauth_error_response(
            status_code=400,
            error="invalid_request",
            description="Missing required parameters: code, codeVerifier.",
        )

    audit_repo = AuditEventRepository(db_session)
    try:
        result = await auth_client.exchange_code_for_tokens(
            code=payload.code,
            code_verifier=payload.code_verifier,
            redirect_uri=settings.oauth_redirect_uri,
        )
    except AuthServerResponseError as exc:
        logger.error("malformed token response from authorization server: %s", exc)
        _audit_token_failure(audit_repo, settings, error_code="server_error", detail=str(exc))
        db_session.commit()
        return _oauth_error_response(
            status_code=502,
            error="server_error",
            description="Invalid response from authorization server.",
        )
    except AuthServerUnavailableError as exc:
        logger.error("authorization server unreachable during token exchange: %s", exc)
        _audit_token_failure(audit_repo, settings, error_code="server_error", detail=str(exc))
        db_session.commit()
        return _oauth_error_response(
            status_code=503,
            error="server_error",
            description=f"Failed to communicate with authorization server: {exc}",
        )

    if isinstance(result, TokenError):
        logger.warning(
            "authorization server rejected token exchange status=%s error=%s description=%s",
            result.status_code,
            result.error,
            result.error_description,
        )
        _audit_token_failure(
            audit_repo,
            settings,
            error_code=result.error,
            detail=result.error_description,
        )
        db_session.commit()
        return JSONResponse(
            status_code=result.status_code,
            content=result.to_payload(),
            headers=_NO_STORE_HEADERS,
        )

    audit_repo.create_event(
        action="auth.token.exchanged",
        target_type="oauth_client",
        target_id=settings.oauth_client_id,
        metadata={"scope": result.scope or "", "expires_in": result.expires_in},
    )
    db_session.commit()
    logger.info("token exchange succeeded for client_id=%s", settings.oauth_client_id)
    return JSONResponse(status_code=200, content=result.to_payload(), headers=_NO_STORE_HEADERS)


@router.post("/api/auth/link-supabase")
async def api_auth_link_identity(
    request: Request,
    auth_client: AuthServerClientDep,
    db_session: DbSessionDep,
) -> JSONResponse:
    access_token = get_bearer_token(request)
    if access_token is None:
        return _error_response(
            status_code=401,
            error="Unauthorized",
            message="No token provided for linking.",
        )

    audit_repo = AuditEventRepository(db_session)
    linker = IdentityLinker(auth_client=auth_client, user_store=UserRepository(db_session))

    try:
        introspection = await linker.introspect(access_token)
    except InactiveTokenError as exc:
        logger.warning("identity link rejected: %s", exc)
        return _error_response(status_code=401, error="Unauthorized", message=str(exc))
    except AuthServerError as exc:
        logger.error("token introspection failed: %s", exc)
        return _error_response(
            status_code=502,
            error="server_error",
            message="Failed to validate token with authorization server.",
        )

    payload = await _parse_payload(request, LinkIdentityPayload)
    if payload is None or not payload.hanko_user_id or not payload.hanko_email:
        return _error_response(
            status_code=400,
            error="Bad Request",
            message="Missing Hanko user ID or email in request body.",
        )

    try:
        result = linker.link(
            introspection,
            claimed_subject=payload.hanko_user_id,
            email=payload.hanko_email,
            current_user_id=payload.current_supabase_user_id,
        )
    except MissingVerifiedSubjectError as exc:
        logger.error("introspection response carried no subject")
        return _error_response(status_code=500, error="linking_error", message=str(exc))
    except IdentityMismatchError as exc:
        audit_repo.create_event(
            action="identity.link.mismatch",
            target_type="external_identity",
            target_id=exc.claimed_subject,
            metadata={
                "verified_subject": exc.verified_subject,
                "claimed_subject": exc.claimed_subject,
            },
            security=True,
        )
        db_session.commit()
        return _error_response(status_code=400, error="Mismatch Error", message=str(exc))
    except UserLinkingError as exc:
        logger.error("user store inconsistency during identity linking: %s", exc)
        db_session.rollback()
        audit_repo.create_event(
            action="identity.link.failed",
            target_type="external_identity",
            target_id=payload.hanko_user_id,
            metadata={"detail": str(exc)},
        )
        db_session.commit()
        return _error_response(status_code=500, error="linking_error", message=str(exc))

    audit_repo.create_event(
        action="identity.link.succeeded",
        target_type="app_user",
        target_id=str(result.user_id),
        actor_user_id=result.user_id,
        metadata={"external_subject": result.external_subject, "created": result.created},
    )
    db_session.commit()
    return JSONResponse(
        status_code=200,
        content={"success": True, "supabaseUserId": str(result.user_id)},
    )


async def _parse_payload[PayloadT: BaseModel](
    request: Request,
    model: type[PayloadT],
) -> PayloadT | None:
    try:
        raw = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None

    if not isinstance(raw, dict):
        return None

    try:
        return model.model_validate(raw)
    except ValidationError:
        return None


def _audit_token_failure(
    audit_repo: AuditEventRepository,
    settings: AppSettings,
    *,
    error_code: str,
    detail: str | None,
) -> None:
    metadata: dict[str, str] = {"code": error_code}
    if detail:
        metadata["detail"] = detail

    audit_repo.create_event(
        action="auth.token.failed",
        target_type="oauth_client",
        target_id=settings.oauth_client_id,
        metadata=metadata,
    )


def _oauth_error_response(*, status_code: int, error: str, description: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "error_description": description},
        headers=_NO_STORE_HEADERS,
    )


def _error_response(*, status_code: int, error: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, "message": message})
