from __future__ import annotations

import logging

from fastapi import FastAPI

from mcpauth.config import AppSettings, get_settings
from mcpauth.db.session import get_session_maker
from mcpauth.integrations.auth_server import AuthServerClient
from mcpauth.integrations.insights import InsightsClient
from mcpauth.integrations.rag_service import RagServiceClient
from mcpauth.routes.auth import router as auth_router
from mcpauth.routes.insights import router as insights_router
from mcpauth.routes.rag import router as rag_router

logger = logging.getLogger(__name__)


def create_app(settings: AppSettings | None = None) -> FastAPI:
    app_settings = settings or get_settings()
    app = FastAPI(title="MCP Auth BFF", version="0.1.0")
    app.state.settings = app_settings
    app.state.session_maker = get_session_maker()
    app.state.auth_server_client = AuthServerClient(app_settings)
    app.state.rag_service_client = RagServiceClient(app_settings)
    app.state.insights_client = InsightsClient(app_settings)

    app.include_router(auth_router)
    app.include_router(rag_router)
    app.include_router(insights_router)

    @app.get("/", tags=["system"], name="root")
    async def root() -> dict[str, str]:
        return {"service": "mcp-auth-bff", "status": "ok"}

    @app.get("/healthz", tags=["system"])
    async def healthz() -> dict[str, str]:
        return {"status": "ok"}

    logger.info(
        "configured BFF env=%s auth_server=%s client_id=%s",
        app_settings.app_env,
        app_settings.auth_server_url,
        app_settings.oauth_client_id,
    )
    return app


app = create_app()
