"""Authentication module for the Pocket-ID dashboard."""

from pocketid_dashboard.auth.models import SessionData, SessionUser, TokenSet, AuthStatus
from pocketid_dashboard.auth.crypto import TokenCipher
from pocketid_dashboard.auth.oidc import OIDCProvider, get_oidc_provider, require_oidc
from pocketid_dashboard.auth.session import (
    SessionContext,
    SessionManager,
    SessionStore,
    create_session_store,
    get_session_manager,
)
from pocketid_dashboard.auth.middleware import SessionMiddleware, CurrentSession
from pocketid_dashboard.auth.gate import (
    require_authenticated,
    require_admin,
    AuthenticatedUser,
)
from pocketid_dashboard.auth.routes import router as auth_router

__all__ = [
    # Models
    "SessionData",
    "SessionUser",
    "TokenSet",
    "AuthStatus",
    # Crypto
    "TokenCipher",
    # Providers
    "OIDCProvider",
    "get_oidc_provider",
    "require_oidc",
    # Session
    "SessionContext",
    "SessionManager",
    "SessionStore",
    "create_session_store",
    "get_session_manager",
    # Middleware
    "SessionMiddleware",
    "CurrentSession",
    "require_authenticated",
    "require_admin",
    "AuthenticatedUser",
    # Routes
    "auth_router",
]
