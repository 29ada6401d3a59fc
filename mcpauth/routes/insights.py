"""Bearer-authenticated pass-through routes for the LLM insights backend."""

from __future__ import annotations

import json
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from mcpauth.dependencies import get_bearer_token, get_insights_client, get_request_user_id
from mcpauth.integrations.insights import InsightsBackendError, InsightsClientProtocol

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/insights", tags=["insights"])
InsightsClientDep = Annotated[InsightsClientProtocol, Depends(get_insights_client)]


@router.post("")
async def api_insights(request: Request, insights_client: InsightsClientDep) -> JSONResponse:
    return await _forward(request, insights_client, "/insights", include_user_id=True)


@router.post("/summary")
async def api_insights_summary(
    request: Request,
    insights_client: InsightsClientDep,
) -> JSONResponse:
    return await _forward(request, insights_client, "/insights/summary", include_user_id=False)


async def _forward(
    request: Request,
    insights_client: InsightsClientProtocol,
    path: str,
    *,
    include_user_id: bool,
) -> JSONResponse:
    access_token = get_bearer_token(request)
    if access_token is None:
        return JSONResponse(
            status_code=401,
            content={"error": "Missing or invalid authorization header"},
        )

    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return JSONResponse(status_code=400, content={"error": "Invalid JSON in request body"})

    user_id = get_request_user_id(request) if include_user_id else None
    try:
        upstream = await insights_client.forward(
            path,
            authorization=f"Bearer {access_token}",
            body=body,
            user_id=user_id,
        )
    except InsightsBackendError as exc:
        logger.error("insights backend forwarding failed: %s", exc)
        return JSONResponse(status_code=502, content={"error": "Failed to connect to LLM backend"})

    return JSONResponse(status_code=upstream.status_code, content=upstream.body)
