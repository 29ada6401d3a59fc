from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from mcpauth.client.bff import BffError, ProviderIdentity
from mcpauth.client.callback import Notice
from mcpauth.client.session import SessionService
from mcpauth.client.storage import AuthorizationStateStore, MemoryStore

FIXED_NOW = datetime(2026, 10, 18, 12, 0, tzinfo=UTC)


class FakeClock:
    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class CountingStore(MemoryStore):
    def __init__(self) -> None:
        super().__init__()
        self.deletes: list[str] = []

    def delete(self, key: str) -> None:
        self.deletes.append(key)
        super().delete(key)


@dataclass
class RecordingNavigator:
    assigned: list[str] = field(default_factory=list)
    replaced: list[str] = field(default_factory=list)

    def assign(self, url: str) -> None:
        self.assigned.append(url)

    def replace(self, url: str) -> None:
        self.replaced.append(url)


@dataclass
class RecordingNotifier:
    notices: list[Notice] = field(default_factory=list)

    def notify(self, notice: Notice) -> None:
        self.notices.append(notice)


@dataclass
class StubTokenExchanger:
    payload: Mapping[str, Any] = field(
        default_factory=lambda: {
            "access_token": "A1",
            "token_type": "Bearer",
            "expires_in": 3600,
            "refresh_token": "R1",
            "scope": "openid profile",
        }
    )
    error: BffError | None = None
    calls: list[dict[str, str]] = field(default_factory=list)

    async def exchange_code(self, *, code: str, code_verifier: str) -> Mapping[str, Any]:
        self.calls.append({"code": code, "code_verifier": code_verifier})
        if self.error is not None:
            raise self.error
        return self.payload


@dataclass
class StubIdentityLinker:
    user_id: str = "6f1c2a52-3b8e-4e0f-9d55-1f0b8e8a4c11"
    error: BffError | None = None
    calls: list[dict[str, Any]] = field(default_factory=list)

    async def link_identity(
        self,
        *,
        access_token: str,
        identity: ProviderIdentity,
        current_user_id: str | None = None,
    ) -> str:
        self.calls.append(
            {
                "access_token": access_token,
                "identity": identity,
                "current_user_id": current_user_id,
            }
        )
        if self.error is not None:
            raise self.error
        return self.user_id


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def durable_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture()
def pending_store() -> CountingStore:
    return CountingStore()


@pytest.fixture()
def state_store(pending_store: CountingStore) -> AuthorizationStateStore:
    return AuthorizationStateStore(pending_store)


@pytest.fixture()
def session(durable_store: MemoryStore, clock: FakeClock) -> SessionService:
    return SessionService(durable_store, clock=clock)
