from __future__ import annotations

from collections.abc import Generator, Mapping
from dataclasses import dataclass, field
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker

from mcpauth.config import AppSettings
from mcpauth.integrations.insights import InsightsResponse
from mcpauth.main import create_app


@dataclass(slots=True)
class StubRagServiceClient:
    result: Any = None
    error: Exception | None = None
    responses: dict[tuple[str, str], Any] = field(default_factory=dict)
    errors: dict[tuple[str, str], Exception] = field(default_factory=dict)
    calls: list[tuple[str, str, dict[str, Any] | None]] = field(default_factory=list)

    async def request(
        self,
        endpoint: str,
        method: str,
        body: Mapping[str, Any] | None = None,
    ) -> Any:
        self.calls.append((endpoint, method, dict(body) if body is not None else None))
        if (endpoint, method) in self.errors:
            raise self.errors[(endpoint, method)]
        if self.error is not None:
            raise self.error
        return self.responses.get((endpoint, method), self.result)


@dataclass(slots=True)
class StubInsightsClient:
    response: InsightsResponse = field(
        default_factory=lambda: InsightsResponse(status_code=200, body={"insights": []})
    )
    error: Exception | None = None
    calls: list[dict[str, Any]] = field(default_factory=list)

    async def forward(
        self,
        path: str,
        *,
        authorization: str,
        body: Any,
        user_id: str | None = None,
    ) -> InsightsResponse:
        self.calls.append(
            {
                "path": path,
                "authorization": authorization,
                "body": body,
                "user_id": user_id,
            }
        )
        if self.error is not None:
            raise self.error
        return self.response


@pytest.fixture()
def stub_rag_client() -> StubRagServiceClient:
    return StubRagServiceClient()


@pytest.fixture()
def stub_insights_client() -> StubInsightsClient:
    return StubInsightsClient()


@pytest.fixture()
def proxy_app(
    test_settings: AppSettings,
    session_factory: sessionmaker[Session],
    stub_rag_client: StubRagServiceClient,
    stub_insights_client: StubInsightsClient,
) -> FastAPI:
    app = create_app(settings=test_settings)
    app.state.session_maker = session_factory
    app.state.rag_service_client = stub_rag_client
    app.state.insights_client = stub_insights_client
    return app


@pytest.fixture()
def client(proxy_app: FastAPI) -> Generator[TestClient]:
    with TestClient(proxy_app) as test_client:
        yield test_client
