"""Authenticated pass-through routes for the retrieval (RAG) service."""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Sequence
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from mcpauth.dependencies import get_rag_service_client, get_request_user_id
from mcpauth.integrations.rag_service import (
    RagMethod,
    RagServiceClientProtocol,
    RagServiceConfigError,
    RagServiceError,
    RagServiceResponseError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/rag", tags=["rag"])
RagClientDep = Annotated[RagServiceClientProtocol, Depends(get_rag_service_client)]
UserIdDep = Annotated[str | None, Depends(get_request_user_id)]

INGEST_REQUIRED_FIELDS = ("sourceId", "documentId", "content", "accountType")
_FORWARDED_STATUSES = frozenset({400, 404})

VAULT_DEFAULT_ACCOUNT_TYPE = "gmail"
VAULT_SOURCE_IDENTIFIER = "vault-agent"
VAULT_INGEST_SOURCE = "vault-agent-run"


@router.get("/sources")
async def api_list_sources(rag_client: RagClientDep, user_id: UserIdDep) -> Response:
    if user_id is None:
        return _unauthorized_response()

    return await _forward(
        rag_client,
        "/sources",
        "GET",
        {"userId": user_id},
        fallback_message="Failed to fetch data sources.",
    )


@router.post("/sources")
async def api_create_source(
    request: Request,
    rag_client: RagClientDep,
    user_id: UserIdDep,
) -> Response:
    if user_id is None:
        return _unauthorized_response()

    body = await _read_json_object(request)
    if body is None:
        return _invalid_body_response()

    missing = _first_missing_field(body, ("sourceType",))
    if missing is not None:
        return _missing_field_response(missing)

    return await _forward(
        rag_client,
        "/sources",
        "POST",
        {**body, "userId": user_id},
        success_status=201,
        fallback_message="Failed to create data source.",
    )


@router.get("/sources/{source_id}")
async def api_get_source(source_id: str, rag_client: RagClientDep, user_id: UserIdDep) -> Response:
    if user_id is None:
        return _unauthorized_response()

    return await _forward(
        rag_client,
        f"/sources/{source_id}",
        "GET",
        {"userId": user_id},
        fallback_message="Failed to fetch data source.",
    )


@router.put("/sources/{source_id}")
async def api_update_source(
    source_id: str,
    request: Request,
    rag_client: RagClientDep,
    user_id: UserIdDep,
) -> Response:
    if user_id is None:
        return _unauthorized_response()

    body = await _read_json_object(request)
    if not body:
        return _error_response(
            status_code=400,
            error="Bad Request",
            message="Missing update data in request body.",
        )

    return await _forward(
        rag_client,
        f"/sources/{source_id}",
        "PUT",
        {**body, "userId": user_id},
        fallback_message="Failed to update data source.",
    )


@router.delete("/sources/{source_id}")
async def api_delete_source(
    source_id: str,
    rag_client: RagClientDep,
    user_id: UserIdDep,
) -> Response:
    if user_id is None:
        return _unauthorized_response()

    return await _forward(
        rag_client,
        f"/sources/{source_id}",
        "DELETE",
        {"userId": user_id},
        success_status=204,
        fallback_message="Failed to delete data source.",
    )


@router.post("/ingest")
async def api_ingest(request: Request, rag_client: RagClientDep, user_id: UserIdDep) -> Response:
    if user_id is None:
        return _unauthorized_response()

    body = await _read_json_object(request)
    if body is None:
        return _invalid_body_response()

    missing = _first_missing_field(body, INGEST_REQUIRED_FIELDS)
    if missing is not None:
        return _missing_field_response(missing)

    return await _forward(
        rag_client,
        "/ingest",
        "POST",
        {**body, "userId": user_id},
        success_status=201,
        fallback_message="Failed to ingest document.",
    )


@router.post("/ingest/vault-helper")
async def api_ingest_vault_update(
    request: Request,
    rag_client: RagClientDep,
    user_id: UserIdDep,
) -> Response:
    if user_id is None:
        return _vault_response(
            status_code=401,
            error="Unauthorized",
            message="User ID header missing.",
        )

    body = await _read_json_object(request)
    agent_update = body.get("last_agent_update") if body is not None else None
    if body is None or not isinstance(agent_update, dict):
        return _vault_response(
            status_code=400,
            error="Bad Request: Invalid data format received from vault helper.",
        )

    result_text = agent_update.get("result")
    if not isinstance(result_text, str) or not result_text.strip():
        logger.info("vault agent update for user_id=%s has no result to ingest", user_id)
        return JSONResponse(
            status_code=200,
            content={
                "success": True,
                "message": "Agent ran, but no result content found to ingest.",
                "generatedSourceId": None,
                "generatedDocumentId": None,
            },
        )

    account_type = _identifier(body.get("accountType")) or VAULT_DEFAULT_ACCOUNT_TYPE
    task_trigger = agent_update.get("task_trigger")
    try:
        source_id = await _resolve_vault_source_id(
            rag_client,
            user_id=user_id,
            account_type=account_type,
        )
    except RagServiceError as exc:
        logger.error(
            "could not resolve RAG source for user_id=%s account_type=%s: %s",
            user_id,
            account_type,
            exc,
        )
        source_id = None
    if source_id is None:
        return _vault_response(
            status_code=502,
            error="Bad Gateway",
            message="Failed to resolve data source ID with RAG service.",
        )

    document_id = str(uuid.uuid4())
    ingest_payload = {
        "userId": user_id,
        "sourceId": source_id,
        "documentId": document_id,
        "source": VAULT_INGEST_SOURCE,
        "accountType": account_type,
        "content": result_text,
        "metadata": {
            "task_trigger": task_trigger if isinstance(task_trigger, str) else "Unknown task",
        },
    }
    try:
        ingest_result = await rag_client.request("/ingest", "POST", ingest_payload)
    except RagServiceConfigError as exc:
        logger.error("RAG proxy misconfigured: %s", exc)
        return _vault_response(
            status_code=500,
            error="Proxy Error",
            message="Failed to ingest document.",
        )
    except RagServiceResponseError as exc:
        status_code = exc.status_code if exc.status_code in _FORWARDED_STATUSES else 502
        return _vault_response(status_code=status_code, error="Proxy Error", message=str(exc))
    except RagServiceError as exc:
        logger.error("vault ingest for user_id=%s failed: %s", user_id, exc)
        return _vault_response(status_code=502, error="Proxy Error", message=str(exc))

    logger.info(
        "ingested vault agent result document_id=%s source_id=%s user_id=%s",
        document_id,
        source_id,
        user_id,
    )
    return JSONResponse(
        status_code=200,
        content={
            "success": True,
            "data": ingest_result,
            "sourceId": source_id,
            "documentId": document_id,
        },
    )


@router.post("/query")
async def api_query(request: Request, rag_client: RagClientDep, user_id: UserIdDep) -> Response:
    if user_id is None:
        return _unauthorized_response()

    body = await _read_json_object(request)
    if body is None:
        return _invalid_body_response()

    missing = _first_missing_field(body, ("queryText",))
    if missing is not None:
        return _missing_field_response(missing)

    return await _forward(
        rag_client,
        "/query",
        "POST",
        {**body, "userId": user_id},
        fallback_message="Failed to perform query.",
    )


async def _forward(
    rag_client: RagServiceClientProtocol,
    endpoint: str,
    method: RagMethod,
    body: dict[str, Any],
    *,
    fallback_message: str,
    success_status: int = 200,
) -> Response:
    try:
        result = await rag_client.request(endpoint, method, body)
    except RagServiceConfigError as exc:
        logger.error("RAG proxy misconfigured: %s", exc)
        return _error_response(status_code=500, error="Proxy Error", message=fallback_message)
    except RagServiceResponseError as exc:
        status_code = exc.status_code if exc.status_code in _FORWARDED_STATUSES else 502
        return _error_response(status_code=status_code, error="Proxy Error", message=str(exc))
    except RagServiceError as exc:
        logger.error("RAG proxy %s %s failed: %s", method, endpoint, exc)
        return _error_response(status_code=502, error="Proxy Error", message=str(exc))

    if success_status == 204:
        return Response(status_code=204)
    return JSONResponse(status_code=success_status, content=result)


async def _read_json_object(request: Request) -> dict[str, Any] | None:
    try:
        raw = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None

    if not isinstance(raw, dict):
        return None
    return raw


async def _resolve_vault_source_id(
    rag_client: RagServiceClientProtocol,
    *,
    user_id: str,
    account_type: str,
) -> str | None:
    sources = await rag_client.request("/sources", "GET", {"userId": user_id})
    if isinstance(sources, list):
        for source in sources:
            if isinstance(source, dict) and source.get("sourceType") == account_type:
                existing_id = _identifier(source.get("id"))
                if existing_id is not None:
                    return existing_id

    logger.info("creating RAG source user_id=%s account_type=%s", user_id, account_type)
    created = await rag_client.request(
        "/sources",
        "POST",
        {
            "userId": user_id,
            "sourceType": account_type,
            "sourceIdentifier": VAULT_SOURCE_IDENTIFIER,
        },
    )
    if isinstance(created, dict):
        return _identifier(created.get("id"))
    return None


def _identifier(value: Any) -> str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _first_missing_field(body: dict[str, Any], fields: Sequence[str]) -> str | None:
    for field in fields:
        value = body.get(field)
        if value is None or value == "":
            return field
    return None


def _unauthorized_response() -> JSONResponse:
    return _error_response(
        status_code=401,
        error="Unauthorized",
        message="User ID header missing or invalid.",
    )


def _invalid_body_response() -> JSONResponse:
    return _error_response(
        status_code=400,
        error="Bad Request",
        message="Invalid request body. JSON object expected.",
    )


def _missing_field_response(field: str) -> JSONResponse:
    return _error_response(
        status_code=400,
        error="Bad Request",
        message=f"Missing required field: {field}.",
    )


def _error_response(*, status_code: int, error: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, "message": message})


def _vault_response(*, status_code: int, error: str, message: str | None = None) -> JSONResponse:
    content: dict[str, Any] = {"success": False, "error": error}
    if message is not None:
        content["message"] = message
    return JSONResponse(status_code=status_code, content=content)
