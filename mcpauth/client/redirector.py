"""Starts an authorization attempt by sending the user to the authorize endpoint."""

from __future__ import annotations

import logging
import webbrowser
from typing import Protocol
from urllib.parse import urlencode

from mcpauth.auth.pkce import CODE_CHALLENGE_METHOD, generate_pkce_pair, generate_state
from mcpauth.client.storage import AuthorizationStateStore
from mcpauth.config import AppSettings

logger = logging.getLogger(__name__)


class Navigator(Protocol):
    def assign(self, url: str) -> None: ...

    def replace(self, url: str) -> None: ...


class BrowserNavigator:
    """Opens URLs in the user's default web browser."""

    def assign(self, url: str) -> None:
        webbrowser.open(url, new=0)

    def replace(self, url: str) -> None:
        # A desktop browser has no history entry to rewrite in place.
        logger.debug("callback URL cleaned to %s", url)


class AuthorizationRedirector:
    def __init__(
        self,
        settings: AppSettings,
        *,
        state_store: AuthorizationStateStore,
        navigator: Navigator,
    ) -> None:
        self._settings = settings
        self._state_store = state_store
        self._navigator = navigator

    def build_authorization_url(self, *, state: str, code_challenge: str) -> str:
        params = {
            "response_type": "code",
            "client_id": self._settings.oauth_client_id,
            "redirect_uri": self._settings.oauth_redirect_uri,
            "scope": self._settings.oauth_scope_param,
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": CODE_CHALLENGE_METHOD,
        }
        return f"{self._settings.authorization_url}?{urlencode(params)}"

    def redirect(self) -> str:
        """Generate fresh PKCE material, store it and navigate away.

        Returns the authorization URL that was handed to the navigator.
        Storage is written before navigation so the callback can always
        find the values it needs.
        """
        pkce_pair = generate_pkce_pair()
        state = generate_state()
        self._state_store.save(state=state, verifier=pkce_pair.verifier)

        authorization_url = self.build_authorization_url(
            state=state,
            code_challenge=pkce_pair.challenge,
        )
        logger.info(
            "redirecting to authorization endpoint for client_id=%s",
            self._settings.oauth_client_id,
        )
        self._navigator.assign(authorization_url)
        return authorization_url
