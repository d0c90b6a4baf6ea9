"""Authentication error types.

Every error that reaches the HTTP layer carries a stable machine-readable
``code`` and a message that is safe to show to the browser.
"""

from fastapi import status


class AuthError(Exception):
    """Base class for authentication and authorization failures."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "auth_error"
    title: str = "Authentication error"
    default_message: str = "Authentication failed"

    def __init__(self, message: str | None = None, *, code: str | None = None):
        self.message = message or self.default_message
        if code:
            self.code = code
        super().__init__(self.message)


class AuthenticationRequired(AuthError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "not_authenticated"
    title = "Unauthorized"
    default_message = "Authentication required"


class AdminRequired(AuthError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"
    title = "Forbidden"
    default_message = "You do not have permission to access this resource"


class OIDCNotInitializedError(AuthError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "oidc_unavailable"
    title = "Service Unavailable"
    default_message = "Authentication service is not available"


class OIDCConfigurationError(AuthError):
    code = "oidc_misconfigured"
    default_message = "OIDC client is not configured"


class OIDCDiscoveryError(AuthError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "oidc_unavailable"
    default_message = "OIDC discovery failed"


class SessionLostError(AuthError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "session_lost"
    title = "Session lost"
    default_message = "Your login session was lost. Please try logging in again."


class StateMismatchError(AuthError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "state_mismatch"
    title = "Invalid request"
    default_message = "Invalid state parameter. Please try logging in again."


class ProviderError(AuthError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "provider_error"
    title = "Authentication failed"
    default_message = "The identity provider rejected the login"


class TokenExchangeError(AuthError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "token_exchange_failed"
    title = "Authentication failed"
    default_message = "Unable to complete login"


class TokenRefreshError(AuthError):
    code = "token_refresh_failed"
    default_message = "Token refresh failed"


class SessionIntegrityError(AuthError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "invalid_session"
    title = "Invalid session"
    default_message = "Invalid session"
