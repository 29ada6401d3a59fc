from __future__ import annotations

from collections.abc import Callable, Generator
from contextlib import AbstractContextManager, contextmanager
from typing import Any

import pytest
from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from mcpauth.config import AppSettings
from mcpauth.db import models as _models  # noqa: F401
from mcpauth.db.base import Base


def build_settings(**overrides: Any) -> AppSettings:
    values: dict[str, Any] = {
        "app_env": "test",
        "auth_server_url": "https://auth.example.test",
        "oauth_client_id": "mcp-auth-demo-client",
        "oauth_redirect_uri": "http://testserver/client",
        "oauth_scopes": ("openid", "profile", "email", "mcp:data:read", "offline_access"),
        "auth_server_http_timeout_seconds": 2.0,
        "rag_service_url": "https://rag.example.test",
        "rag_service_api_key": "internal-rag-key",
        "rag_service_http_timeout_seconds": 2.0,
        "insights_backend_url": "https://llm.example.test",
        "insights_http_timeout_seconds": 2.0,
        "resource_api_url": "https://resource.example.test/api",
        "bff_base_url": "http://testserver",
    }
    values.update(overrides)
    return AppSettings(**values)


@pytest.fixture()
def test_settings() -> AppSettings:
    return build_settings()


@pytest.fixture()
def db_engine() -> Generator[Engine]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection: Any, _: Any) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture()
def session_factory(db_engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(
        bind=db_engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )


@pytest.fixture()
def db_session(session_factory: sessionmaker[Session]) -> Generator[Session]:
    with session_factory() as session:
        yield session


@pytest.fixture()
def session_scope_factory(
    session_factory: sessionmaker[Session],
) -> Callable[[], AbstractContextManager[Session]]:
    @contextmanager
    def _scope() -> Generator[Session]:
        session = session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    return _scope
