from __future__ import annotations

from collections.abc import Generator
from dataclasses import dataclass, field

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker

from mcpauth.config import AppSettings
from mcpauth.integrations.auth_server import (
    IntrospectionActive,
    IntrospectionResult,
    TokenExchangeResult,
    TokenSuccess,
)
from mcpauth.main import create_app


@dataclass(slots=True)
class StubAuthServerClient:
    token_result: TokenExchangeResult | Exception = field(
        default_factory=lambda: TokenSuccess(
            access_token="access-token",
            token_type="Bearer",
            expires_in=3600,
            refresh_token="refresh-token",
            scope="openid profile email",
        )
    )
    introspection_result: IntrospectionResult | Exception = field(
        default_factory=lambda: IntrospectionActive(
            subject="hanko-user-1",
            claims={"active": True, "sub": "hanko-user-1", "email": "user@example.net"},
        )
    )
    token_calls: list[dict[str, str]] = field(default_factory=list)
    introspection_calls: list[str] = field(default_factory=list)

    async def exchange_code_for_tokens(
        self,
        *,
        code: str,
        code_verifier: str,
        redirect_uri: str,
    ) -> TokenExchangeResult:
        self.token_calls.append(
            {
                "code": code,
                "code_verifier": code_verifier,
                "redirect_uri": redirect_uri,
            }
        )
        if isinstance(self.token_result, Exception):
            raise self.token_result
        return self.token_result

    async def introspect_token(self, *, token: str) -> IntrospectionResult:
        self.introspection_calls.append(token)
        if isinstance(self.introspection_result, Exception):
            raise self.introspection_result
        return self.introspection_result


@pytest.fixture()
def stub_auth_client() -> StubAuthServerClient:
    return StubAuthServerClient()


@pytest.fixture()
def test_app(
    test_settings: AppSettings,
    session_factory: sessionmaker[Session],
    stub_auth_client: StubAuthServerClient,
) -> FastAPI:
    app = create_app(settings=test_settings)
    app.state.session_maker = session_factory
    app.state.auth_server_client = stub_auth_client
    return app


@pytest.fixture()
def client(test_app: FastAPI) -> Generator[TestClient]:
    with TestClient(test_app) as test_client:
        yield test_client
