"""Handles the authorization server's redirect back to the client.

The handler consumes the one-shot state token and PKCE verifier, verifies
the state, exchanges the code through the BFF and then links the passkey
identity to a local user record. Each step only starts after the previous
one finished. Callback parameters are removed from the visible URL once the
whole sequence is over, never in the middle of it.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Protocol
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from mcpauth.client.bff import BffError, IdentityLinkClient, ProviderIdentity, TokenExchanger
from mcpauth.client.redirector import Navigator
from mcpauth.client.session import (
    InvalidSessionTransitionError,
    SessionService,
    SessionStatus,
    TokenSet,
)
from mcpauth.client.storage import AuthorizationStateStore

logger = logging.getLogger(__name__)

CALLBACK_PARAMS = frozenset({"code", "state", "error", "error_description", "error_uri"})


class CallbackError(Exception):
    """Base exception for a failed authorization callback."""


class ProviderAuthorizationError(CallbackError):
    """Raised when the authorization server redirected back with an error."""


class StateMismatchError(CallbackError):
    """Raised when the returned state does not equal the stored one."""


class MissingVerifierError(CallbackError):
    """Raised when no PKCE verifier was stored for this attempt."""


class TokenExchangeFailedError(CallbackError):
    """Raised when the code could not be exchanged for tokens."""


class NoticeLevel(StrEnum):
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
    SECURITY = "security"


@dataclass(frozen=True, slots=True)
class Notice:
    level: NoticeLevel
    title: str
    message: str


class Notifier(Protocol):
    def notify(self, notice: Notice) -> None: ...


class LoggingNotifier:
    def notify(self, notice: Notice) -> None:
        if notice.level is NoticeLevel.SUCCESS:
            logger.info("%s: %s", notice.title, notice.message)
        elif notice.level is NoticeLevel.WARNING:
            logger.warning("%s: %s", notice.title, notice.message)
        else:
            logger.error("%s: %s", notice.title, notice.message)


class CallbackOutcome(StrEnum):
    NO_CALLBACK = "no_callback"
    IGNORED = "ignored"
    AUTHENTICATED = "authenticated"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class CallbackParams:
    code: str | None = None
    state: str | None = None
    error: str | None = None
    error_description: str | None = None

    @classmethod
    def from_query(cls, query: Mapping[str, str]) -> CallbackParams:
        return cls(
            code=query.get("code") or None,
            state=query.get("state") or None,
            error=query.get("error") or None,
            error_description=query.get("error_description") or None,
        )

    @classmethod
    def from_url(cls, url: str) -> CallbackParams:
        return cls.from_query(dict(parse_qsl(urlsplit(url).query)))

    @property
    def has_callback(self) -> bool:
        return bool(self.error or self.code or self.state)


def strip_callback_params(url: str) -> str:
    parts = urlsplit(url)
    remaining = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if key not in CALLBACK_PARAMS
    ]
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(remaining), ""))


def provider_error_message(error: str, description: str | None) -> str:
    return f"Authorization failed: {error} ({description or 'No description provided'})"


class CallbackHandler:
    def __init__(
        self,
        *,
        session: SessionService,
        state_store: AuthorizationStateStore,
        token_exchanger: TokenExchanger,
        identity_linker: IdentityLinkClient,
        navigator: Navigator,
        notifier: Notifier | None = None,
    ) -> None:
        self._session = session
        self._state_store = state_store
        self._token_exchanger = token_exchanger
        self._identity_linker = identity_linker
        self._navigator = navigator
        self._notifier = notifier or LoggingNotifier()

    async def handle_url(
        self,
        url: str,
        *,
        identity: ProviderIdentity | None = None,
    ) -> CallbackOutcome:
        return await self.handle(
            CallbackParams.from_url(url),
            clean_url=strip_callback_params(url),
            identity=identity,
        )

    async def handle(
        self,
        params: CallbackParams,
        *,
        clean_url: str,
        identity: ProviderIdentity | None = None,
    ) -> CallbackOutcome:
        if params.error:
            return self._handle_provider_error(params, clean_url=clean_url)

        if not params.code or not params.state:
            if not params.has_callback and self._session.status is SessionStatus.ERROR:
                self._session.reset()
            return CallbackOutcome.NO_CALLBACK

        try:
            self._session.begin()
        except InvalidSessionTransitionError as exc:
            logger.info("ignoring authorization callback: %s", exc)
            return CallbackOutcome.IGNORED

        pending = self._state_store.take()
        try:
            if pending.state is None or not secrets.compare_digest(
                pending.state.encode("utf-8"),
                params.state.encode("utf-8"),
            ):
                raise StateMismatchError("State mismatch. Authorization process aborted.")
            if not pending.verifier:
                raise MissingVerifierError("PKCE verifier missing. Authorization process aborted.")
            tokens = await self._exchange(code=params.code, code_verifier=pending.verifier)
        except (StateMismatchError, MissingVerifierError) as exc:
            logger.error("SECURITY: authorization callback rejected: %s", exc)
            self._session.fail(str(exc))
            self._notifier.notify(Notice(NoticeLevel.SECURITY, "Security Alert", str(exc)))
            self._navigator.replace(clean_url)
            return CallbackOutcome.FAILED
        except TokenExchangeFailedError as exc:
            logger.error("%s", exc)
            self._session.fail(str(exc))
            self._notifier.notify(Notice(NoticeLevel.ERROR, "Token Exchange Failed", str(exc)))
            self._navigator.replace(clean_url)
            return CallbackOutcome.FAILED

        try:
            self._session.login(tokens)
        except InvalidSessionTransitionError as exc:
            logger.info("session changed during token exchange; discarding tokens: %s", exc)
            self._navigator.replace(clean_url)
            return CallbackOutcome.IGNORED
        self._notifier.notify(
            Notice(NoticeLevel.SUCCESS, "Authentication Successful", "Tokens obtained.")
        )

        await self._link_identity(tokens, identity)
        self._navigator.replace(clean_url)
        return CallbackOutcome.AUTHENTICATED

    def _handle_provider_error(self, params: CallbackParams, *, clean_url: str) -> CallbackOutcome:
        if self._session.status is SessionStatus.LOADING:
            logger.info("ignoring provider error while an exchange is in flight")
            return CallbackOutcome.IGNORED

        error = ProviderAuthorizationError(
            provider_error_message(params.error or "unknown_error", params.error_description)
        )
        logger.error("authorization server returned an error: %s", error)
        self._state_store.clear()
        self._session.fail(str(error))
        self._notifier.notify(Notice(NoticeLevel.ERROR, "OAuth Error", str(error)))
        self._navigator.replace(clean_url)
        return CallbackOutcome.FAILED

    async def _exchange(self, *, code: str, code_verifier: str) -> TokenSet:
        try:
            payload = await self._token_exchanger.exchange_code(
                code=code,
                code_verifier=code_verifier,
            )
            return TokenSet.from_token_response(payload, issued_at=self._session.now())
        except (BffError, ValueError) as exc:
            raise TokenExchangeFailedError(f"Token exchange failed: {exc}") from exc

    async def _link_identity(self, tokens: TokenSet, identity: ProviderIdentity | None) -> None:
        if identity is None:
            self._notifier.notify(
                Notice(
                    NoticeLevel.WARNING,
                    "Account Not Linked",
                    "No passkey identity available; continuing without a local user.",
                )
            )
            return

        try:
            user_id = await self._identity_linker.link_identity(
                access_token=tokens.access_token,
                identity=identity,
            )
        except BffError as exc:
            logger.warning("identity linking failed; session stays unlinked: %s", exc)
            self._notifier.notify(
                Notice(NoticeLevel.WARNING, "Account Linking Failed", str(exc))
            )
            return

        if self._session.status is not SessionStatus.AUTHENTICATED:
            logger.info("session changed during identity linking; dropping user id")
            return
        self._session.merge_user_id(user_id)
        logger.info("linked passkey identity to local user id=%s", user_id)
