"""Application configuration loading."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, cast

import yaml

DEFAULT_RUNTIME_CONFIG_PATH = "runtime-config.yaml"
RUNTIME_CONFIG_PATH_ENV = "MCPAUTH_RUNTIME_CONFIG_PATH"
DEFAULT_SCOPES = ("openid", "profile", "email", "mcp:data:read", "offline_access")


@dataclass(frozen=True, slots=True)
class AppSettings:
    app_env: str
    auth_server_url: str
    oauth_client_id: str
    oauth_redirect_uri: str
    oauth_scopes: tuple[str, ...]
    auth_server_http_timeout_seconds: float
    rag_service_url: str = ""
    rag_service_api_key: str = ""
    rag_service_http_timeout_seconds: float = 30.0
    insights_backend_url: str = "http://localhost:8100"
    insights_http_timeout_seconds: float = 60.0
    resource_api_url: str = "http://localhost:8789/api"
    bff_base_url: str = "http://localhost:3000"
    client_state_path: str = ""
    runtime_config_path: str = DEFAULT_RUNTIME_CONFIG_PATH

    @property
    def oauth_scope_param(self) -> str:
        return " ".join(self.oauth_scopes)

    @property
    def authorization_url(self) -> str:
        return f"{self.auth_server_url}/authorize"

    @property
    def token_url(self) -> str:
        return f"{self.auth_server_url}/token"

    @property
    def introspection_url(self) -> str:
        return f"{self.auth_server_url}/introspect"

    @classmethod
    def from_yaml(
        cls, runtime_config_path: str = DEFAULT_RUNTIME_CONFIG_PATH
    ) -> AppSettings:
        normalized_path = runtime_config_path.strip() or DEFAULT_RUNTIME_CONFIG_PATH
        config = _load_runtime_config(normalized_path)

        app_cfg = cast(dict[str, Any], config.get("app", {}))
        auth_server_cfg = cast(dict[str, Any], config.get("auth_server", {}))
        oauth_cfg = cast(dict[str, Any], config.get("oauth", {}))
        rag_cfg = cast(dict[str, Any], config.get("rag_service", {}))
        insights_cfg = cast(dict[str, Any], config.get("insights", {}))
        client_cfg = cast(dict[str, Any], config.get("client", {}))

        app_env = str(app_cfg.get("env", "development")).lower()
        bff_base_url = _strip_trailing_slash(
            str(app_cfg.get("base_url", "http://localhost:3000"))
        )
        oauth_scopes = _normalize_scopes(
            tuple(cast(list[str], oauth_cfg.get("scopes", list(DEFAULT_SCOPES))))
        )

        return cls(
            app_env=app_env,
            auth_server_url=_strip_trailing_slash(
                os.environ.get("AUTH_SERVER_URL")
                or str(auth_server_cfg.get("url", "http://localhost:8788"))
            ),
            oauth_client_id=str(oauth_cfg.get("client_id", "mcp-auth-demo-client")),
            oauth_redirect_uri=str(
                oauth_cfg.get("redirect_uri", f"{bff_base_url}/client")
            ),
            oauth_scopes=oauth_scopes,
            auth_server_http_timeout_seconds=max(
                1.0,
                float(auth_server_cfg.get("http_timeout_seconds", 10.0)),
            ),
            rag_service_url=_strip_trailing_slash(
                os.environ.get("RAG_SERVICE_URL") or str(rag_cfg.get("url", ""))
            ),
            rag_service_api_key=os.environ.get("RAG_SERVICE_API_KEY", ""),
            rag_service_http_timeout_seconds=max(
                1.0,
                float(rag_cfg.get("http_timeout_seconds", 30.0)),
            ),
            insights_backend_url=_strip_trailing_slash(
                os.environ.get("LLM_BACKEND_URL")
                or str(insights_cfg.get("url", "http://localhost:8100"))
            ),
            insights_http_timeout_seconds=max(
                1.0,
                float(insights_cfg.get("http_timeout_seconds", 60.0)),
            ),
            resource_api_url=_strip_trailing_slash(
                str(client_cfg.get("resource_api_url", "http://localhost:8789/api"))
            ),
            bff_base_url=bff_base_url,
            client_state_path=str(client_cfg.get("state_path", "")),
            runtime_config_path=normalized_path,
        )

    @classmethod
    def from_env(cls) -> AppSettings:
        return cls.from_yaml(
            os.environ.get(RUNTIME_CONFIG_PATH_ENV, DEFAULT_RUNTIME_CONFIG_PATH)
        )


def _load_runtime_config(runtime_config_path: str) -> dict[str, Any]:
    path = Path(runtime_config_path)
    if not path.exists() or not path.is_file():
        return {}

    parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
    if isinstance(parsed, dict):
        return parsed
    return {}


def _normalize_scopes(scopes: tuple[str, ...]) -> tuple[str, ...]:
    normalized: list[str] = []
    seen: set[str] = set()

    if "openid" not in scopes:
        normalized.append("openid")
        seen.add("openid")

    for scope in scopes:
        normalized_scope = scope.strip()
        if not normalized_scope or normalized_scope in seen:
            continue
        seen.add(normalized_scope)
        normalized.append(normalized_scope)
    return tuple(normalized)


def _strip_trailing_slash(value: str) -> str:
    return value.strip().rstrip("/")


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return AppSettings.from_env()
