"""Client session state and its persistence.

A :class:`SessionService` owns exactly one :class:`SessionState` per client
instance. Status changes go through an explicit transition table so that
replayed or overlapping callbacks are rejected instead of silently
clobbering an in-flight or completed login.
"""

from __future__ import annotations

import json
import logging
import math
from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Any

from mcpauth.client.storage import KeyValueStore

logger = logging.getLogger(__name__)

AUTH_STATE_KEY = "mcp_auth_state"

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(tz=UTC)


class SessionStatus(StrEnum):
    IDLE = "idle"
    LOADING = "loading"
    AUTHENTICATED = "authenticated"
    ERROR = "error"


class SessionEvent(StrEnum):
    BEGIN = "begin"
    LOGIN = "login"
    FAIL = "fail"
    RESET = "reset"
    RESTORE = "restore"
    LOGOUT = "logout"


TRANSITIONS: dict[tuple[SessionStatus, SessionEvent], SessionStatus] = {
    (SessionStatus.IDLE, SessionEvent.BEGIN): SessionStatus.LOADING,
    (SessionStatus.ERROR, SessionEvent.BEGIN): SessionStatus.LOADING,
    (SessionStatus.LOADING, SessionEvent.LOGIN): SessionStatus.AUTHENTICATED,
    (SessionStatus.IDLE, SessionEvent.FAIL): SessionStatus.ERROR,
    (SessionStatus.LOADING, SessionEvent.FAIL): SessionStatus.ERROR,
    (SessionStatus.AUTHENTICATED, SessionEvent.FAIL): SessionStatus.ERROR,
    (SessionStatus.ERROR, SessionEvent.FAIL): SessionStatus.ERROR,
    (SessionStatus.ERROR, SessionEvent.RESET): SessionStatus.IDLE,
    (SessionStatus.IDLE, SessionEvent.RESTORE): SessionStatus.AUTHENTICATED,
    (SessionStatus.IDLE, SessionEvent.LOGOUT): SessionStatus.IDLE,
    (SessionStatus.LOADING, SessionEvent.LOGOUT): SessionStatus.IDLE,
    (SessionStatus.AUTHENTICATED, SessionEvent.LOGOUT): SessionStatus.IDLE,
    (SessionStatus.ERROR, SessionEvent.LOGOUT): SessionStatus.IDLE,
}


class InvalidSessionTransitionError(Exception):
    def __init__(self, status: SessionStatus, event: SessionEvent) -> None:
        super().__init__(f"cannot apply {event.value} while session is {status.value}")
        self.status = status
        self.event = event


@dataclass(frozen=True, slots=True)
class TokenSet:
    access_token: str
    token_type: str = "Bearer"
    refresh_token: str | None = None
    scope: str | None = None
    expires_at: datetime | None = None

    @classmethod
    def from_token_response(cls, payload: Mapping[str, Any], *, issued_at: datetime) -> TokenSet:
        access_token = payload.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise ValueError("token response is missing access_token")

        return cls(
            access_token=access_token,
            token_type=_optional_str(payload.get("token_type")) or "Bearer",
            refresh_token=_optional_str(payload.get("refresh_token")),
            scope=_optional_str(payload.get("scope")),
            expires_at=compute_expires_at(payload.get("expires_in"), issued_at=issued_at),
        )

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now > self.expires_at


def compute_expires_at(expires_in: Any, *, issued_at: datetime) -> datetime | None:
    """Absolute expiry for a relative lifetime; ``None`` when unknown."""
    if isinstance(expires_in, bool) or not isinstance(expires_in, (int, float)):
        return None
    if not math.isfinite(expires_in) or expires_in <= 0:
        return None
    try:
        return issued_at + timedelta(seconds=expires_in)
    except OverflowError:
        logger.warning("ignoring out-of-range token lifetime expires_in=%s", expires_in)
        return None


@dataclass(frozen=True, slots=True)
class SessionState:
    status: SessionStatus = SessionStatus.IDLE
    tokens: TokenSet | None = None
    error: str | None = None
    user_id: str | None = None

    @property
    def access_token(self) -> str | None:
        return self.tokens.access_token if self.tokens else None

    @property
    def expires_at(self) -> datetime | None:
        return self.tokens.expires_at if self.tokens else None


class SessionService:
    def __init__(self, store: KeyValueStore, *, clock: Clock = utcnow) -> None:
        self._store = store
        self._clock = clock
        self._state = SessionState()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def status(self) -> SessionStatus:
        return self._state.status

    def now(self) -> datetime:
        return self._clock()

    def begin(self) -> None:
        self._apply(SessionEvent.BEGIN)

    def login(self, tokens: TokenSet) -> None:
        self._apply(SessionEvent.LOGIN, tokens=tokens)
        self._persist()

    def fail(self, message: str) -> None:
        self._apply(SessionEvent.FAIL, error=message)
        self._persist()

    def reset(self) -> None:
        self._apply(SessionEvent.RESET)

    def logout(self) -> None:
        self._apply(SessionEvent.LOGOUT)
        self._persist()
        logger.info("client session logged out")

    def merge_user_id(self, user_id: str) -> None:
        if self._state.status is not SessionStatus.AUTHENTICATED:
            raise InvalidSessionTransitionError(self._state.status, SessionEvent.LOGIN)
        self._state = replace(self._state, user_id=user_id)
        self._persist()

    def is_expired(self) -> bool:
        tokens = self._state.tokens
        return tokens is not None and tokens.is_expired(self.now())

    def restore(self) -> SessionState:
        """Seed the session from durable storage, discarding stale records."""
        raw = self._store.get(AUTH_STATE_KEY)
        if raw is None or self._state.status is not SessionStatus.IDLE:
            return self._state

        try:
            tokens, user_id = _decode_record(raw)
        except (ValueError, TypeError) as exc:
            logger.warning("discarding corrupt persisted session: %s", exc)
            self._store.delete(AUTH_STATE_KEY)
            return self._state

        if tokens.is_expired(self.now()):
            logger.info("discarding expired persisted session")
            self._store.delete(AUTH_STATE_KEY)
            return self._state

        self._apply(SessionEvent.RESTORE, tokens=tokens, user_id=user_id)
        return self._state

    def _apply(
        self,
        event: SessionEvent,
        *,
        tokens: TokenSet | None = None,
        error: str | None = None,
        user_id: str | None = None,
    ) -> None:
        target = TRANSITIONS.get((self._state.status, event))
        if target is None:
            raise InvalidSessionTransitionError(self._state.status, event)
        logger.debug("session %s -> %s via %s", self._state.status, target, event)
        self._state = SessionState(status=target, tokens=tokens, error=error, user_id=user_id)

    def _persist(self) -> None:
        tokens = self._state.tokens
        if (
            self._state.status is SessionStatus.AUTHENTICATED
            and tokens is not None
            and not tokens.is_expired(self.now())
        ):
            self._store.set(AUTH_STATE_KEY, _encode_record(tokens, self._state.user_id))
            return
        self._store.delete(AUTH_STATE_KEY)


def _encode_record(tokens: TokenSet, user_id: str | None) -> str:
    return json.dumps(
        {
            "access_token": tokens.access_token,
            "token_type": tokens.token_type,
            "refresh_token": tokens.refresh_token,
            "scope": tokens.scope,
            "expires_at": tokens.expires_at.isoformat() if tokens.expires_at else None,
            "user_id": user_id,
        }
    )


def _decode_record(raw: str) -> tuple[TokenSet, str | None]:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("persisted session is not valid JSON") from exc

    if not isinstance(data, dict):
        raise ValueError("persisted session must be a JSON object")

    access_token = data.get("access_token")
    if not isinstance(access_token, str) or not access_token:
        raise ValueError("persisted session has no access token")

    raw_expires_at = data.get("expires_at")
    expires_at = datetime.fromisoformat(raw_expires_at) if raw_expires_at is not None else None
    if expires_at is not None and expires_at.tzinfo is None:
        raise ValueError("persisted expiry must be timezone-aware")

    tokens = TokenSet(
        access_token=access_token,
        token_type=_optional_str(data.get("token_type")) or "Bearer",
        refresh_token=_optional_str(data.get("refresh_token")),
        scope=_optional_str(data.get("scope")),
        expires_at=expires_at,
    )
    return tokens, _optional_str(data.get("user_id"))


def _optional_str(value: Any) -> str | None:
    if isinstance(value, str) and value:
        return value
    return None
