"""External service integrations."""

from mcpauth.integrations.auth_server import (
    AuthServerClient,
    AuthServerClientProtocol,
    AuthServerError,
    AuthServerResponseError,
    AuthServerUnavailableError,
    IntrospectionActive,
    IntrospectionInactive,
    IntrospectionResult,
    TokenError,
    TokenExchangeResult,
    TokenSuccess,
    parse_introspection_response,
    parse_token_response,
)
from mcpauth.integrations.insights import (
    InsightsBackendError,
    InsightsClient,
    InsightsClientProtocol,
    InsightsResponse,
)
from mcpauth.integrations.rag_service import (
    RagServiceClient,
    RagServiceClientProtocol,
    RagServiceConfigError,
    RagServiceError,
    RagServiceResponseError,
    RagServiceUnavailableError,
)

__all__ = [
    "AuthServerClient",
    "AuthServerClientProtocol",
    "AuthServerError",
    "AuthServerResponseError",
    "AuthServerUnavailableError",
    "InsightsBackendError",
    "InsightsClient",
    "InsightsClientProtocol",
    "InsightsResponse",
    "IntrospectionActive",
    "IntrospectionInactive",
    "IntrospectionResult",
    "RagServiceClient",
    "RagServiceClientProtocol",
    "RagServiceConfigError",
    "RagServiceError",
    "RagServiceResponseError",
    "RagServiceUnavailableError",
    "TokenError",
    "TokenExchangeResult",
    "TokenSuccess",
    "parse_introspection_response",
    "parse_token_response",
]
