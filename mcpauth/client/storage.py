"""Key/value storage backends used by the client-side authorization flow.

Two scopes exist. The authorization state store (``oauth_state`` and
``oauth_pkce_verifier``) lives only for one authorization attempt and is
normally backed by :class:`MemoryStore`. The durable session record
(``mcp_auth_state``) survives restarts and is backed by
:class:`JsonFileStore`.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

OAUTH_STATE_KEY = "oauth_state"
PKCE_VERIFIER_KEY = "oauth_pkce_verifier"


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryStore:
    def __init__(self) -> None:
        self._items: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._items.get(key)

    def set(self, key: str, value: str) -> None:
        self._items[key] = value

    def delete(self, key: str) -> None:
        self._items.pop(key, None)

    def __contains__(self, key: object) -> bool:
        return key in self._items


class JsonFileStore:
    """String values persisted as a single JSON object on disk."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    def get(self, key: str) -> str | None:
        value = self._read().get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        items = self._read()
        items[key] = value
        self._write(items)

    def delete(self, key: str) -> None:
        items = self._read()
        if key not in items:
            return
        del items[key]
        self._write(items)

    def _read(self) -> dict[str, object]:
        if not self._path.is_file():
            return {}

        try:
            parsed = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("discarding unreadable client state file %s: %s", self._path, exc)
            return {}

        if isinstance(parsed, dict):
            return parsed
        return {}

    def _write(self, items: dict[str, object]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        temp_path.write_text(json.dumps(items, sort_keys=True), encoding="utf-8")
        os.replace(temp_path, self._path)


@dataclass(frozen=True, slots=True)
class PendingAuthorization:
    state: str | None
    verifier: str | None


class AuthorizationStateStore:
    """Holds the state token and PKCE verifier for a single attempt."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    def save(self, *, state: str, verifier: str) -> None:
        self._store.set(PKCE_VERIFIER_KEY, verifier)
        self._store.set(OAUTH_STATE_KEY, state)

    def take(self) -> PendingAuthorization:
        pending = PendingAuthorization(
            state=self._store.get(OAUTH_STATE_KEY),
            verifier=self._store.get(PKCE_VERIFIER_KEY),
        )
        self.clear()
        return pending

    def clear(self) -> None:
        self._store.delete(PKCE_VERIFIER_KEY)
        self._store.delete(OAUTH_STATE_KEY)
