"""Common FastAPI dependencies."""

from __future__ import annotations

from collections.abc import Generator
from typing import cast

from fastapi import Request
from sqlalchemy.orm import Session, sessionmaker

from mcpauth.config import AppSettings
from mcpauth.integrations.auth_server import AuthServerClientProtocol
from mcpauth.integrations.insights import InsightsClientProtocol
from mcpauth.integrations.rag_service import RagServiceClientProtocol


def get_app_settings(request: Request) -> AppSettings:
    return cast(AppSettings, request.app.state.settings)


def get_auth_server_client(request: Request) -> AuthServerClientProtocol:
    return cast(AuthServerClientProtocol, request.app.state.auth_server_client)


def get_rag_service_client(request: Request) -> RagServiceClientProtocol:
    return cast(RagServiceClientProtocol, request.app.state.rag_service_client)


def get_insights_client(request: Request) -> InsightsClientProtocol:
    return cast(InsightsClientProtocol, request.app.state.insights_client)


def get_db_session(request: Request) -> Generator[Session]:
    session_factory = cast(sessionmaker[Session], request.app.state.session_maker)
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


def get_bearer_token(request: Request) -> str | None:
    header = request.headers.get("authorization")
    if not header:
        return None

    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = token.strip()
    return token or None


def get_request_user_id(request: Request) -> str | None:
    raw_user_id = request.headers.get("x-user-id")
    if raw_user_id is None:
        return None
    normalized = raw_user_id.strip()
    return normalized or None
