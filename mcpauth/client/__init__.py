from mcpauth.client.bff import (
    BffClient,
    BffError,
    BffRequestError,
    BffUnavailableError,
    ProviderIdentity,
    ResourceApiClient,
    ResourceResponse,
    SessionExpiredError,
    SessionNotAuthenticatedError,
)
from mcpauth.client.callback import (
    CallbackError,
    CallbackHandler,
    CallbackOutcome,
    CallbackParams,
    LoggingNotifier,
    MissingVerifierError,
    Notice,
    NoticeLevel,
    ProviderAuthorizationError,
    StateMismatchError,
    TokenExchangeFailedError,
)
from mcpauth.client.factory import ClientComponents, build_client
from mcpauth.client.redirector import AuthorizationRedirector, BrowserNavigator
from mcpauth.client.session import (
    InvalidSessionTransitionError,
    SessionService,
    SessionState,
    SessionStatus,
    TokenSet,
)
from mcpauth.client.storage import (
    AuthorizationStateStore,
    JsonFileStore,
    MemoryStore,
)

__all__ = [
    "AuthorizationRedirector",
    "AuthorizationStateStore",
    "BffClient",
    "BffError",
    "BffRequestError",
    "BffUnavailableError",
    "BrowserNavigator",
    "CallbackError",
    "CallbackHandler",
    "CallbackOutcome",
    "CallbackParams",
    "ClientComponents",
    "InvalidSessionTransitionError",
    "JsonFileStore",
    "LoggingNotifier",
    "MemoryStore",
    "MissingVerifierError",
    "Notice",
    "NoticeLevel",
    "ProviderAuthorizationError",
    "ProviderIdentity",
    "ResourceApiClient",
    "ResourceResponse",
    "SessionExpiredError",
    "SessionNotAuthenticatedError",
    "SessionService",
    "SessionState",
    "SessionStatus",
    "StateMismatchError",
    "TokenExchangeFailedError",
    "TokenSet",
    "build_client",
]
