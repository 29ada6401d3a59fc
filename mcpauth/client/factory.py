"""Wires the client-side components for one client instance."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from mcpauth.client.bff import BffClient, HTTPClientFactory, ResourceApiClient
from mcpauth.client.callback import CallbackHandler, Notifier
from mcpauth.client.redirector import AuthorizationRedirector, BrowserNavigator, Navigator
from mcpauth.client.session import Clock, SessionService, utcnow
from mcpauth.client.storage import (
    AuthorizationStateStore,
    JsonFileStore,
    KeyValueStore,
    MemoryStore,
)
from mcpauth.config import AppSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ClientComponents:
    session: SessionService
    state_store: AuthorizationStateStore
    redirector: AuthorizationRedirector
    bff: BffClient
    callback: CallbackHandler
    resources: ResourceApiClient


def build_durable_store(settings: AppSettings) -> KeyValueStore:
    state_path = settings.client_state_path.strip()
    if not state_path:
        logger.info("client session persistence disabled; using in-memory storage")
        return MemoryStore()
    return JsonFileStore(state_path)


def build_client(
    settings: AppSettings,
    *,
    navigator: Navigator | None = None,
    notifier: Notifier | None = None,
    durable_store: KeyValueStore | None = None,
    http_client_factory: HTTPClientFactory | None = None,
    clock: Clock = utcnow,
) -> ClientComponents:
    navigator = navigator or BrowserNavigator()
    session = SessionService(durable_store or build_durable_store(settings), clock=clock)
    session.restore()

    state_store = AuthorizationStateStore(MemoryStore())
    if http_client_factory is None:
        bff = BffClient(settings)
        resources = ResourceApiClient(settings, session)
    else:
        bff = BffClient(settings, http_client_factory=http_client_factory)
        resources = ResourceApiClient(
            settings,
            session,
            http_client_factory=http_client_factory,
        )

    return ClientComponents(
        session=session,
        state_store=state_store,
        redirector=AuthorizationRedirector(
            settings,
            state_store=state_store,
            navigator=navigator,
        ),
        bff=bff,
        callback=CallbackHandler(
            session=session,
            state_store=state_store,
            token_exchanger=bff,
            identity_linker=bff,
            navigator=navigator,
            notifier=notifier,
        ),
        resources=resources,
    )
