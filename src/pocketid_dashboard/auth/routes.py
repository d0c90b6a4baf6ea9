"""Authentication routes for the OIDC login/logout flow."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import RedirectResponse

from pocketid_dashboard.config import Settings, get_app_settings
from pocketid_dashboard.auth.gate import AuthenticatedUser, AuthorizationGate, get_authorization_gate
from pocketid_dashboard.auth.middleware import CurrentSession, regenerate_session
from pocketid_dashboard.auth.models import AuthStatus, LoginUrlResponse, SessionUser
from pocketid_dashboard.auth.oidc import OIDCProvider, get_oidc_provider, require_oidc
from pocketid_dashboard.auth.session import SessionContext

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["authentication"])


@router.get("/login")
async def login(
    session: CurrentSession,
    oidc_provider: Annotated[OIDCProvider, Depends(require_oidc)],
):
    """
    Initiate OIDC login flow.
    Redirects to Pocket-ID for authentication.
    """
    auth_url = await oidc_provider.generate_auth_url(session)
    return RedirectResponse(url=auth_url, status_code=status.HTTP_302_FOUND)


@router.get("/login-url", response_model=LoginUrlResponse)
async def login_url(
    session: CurrentSession,
    oidc_provider: Annotated[OIDCProvider, Depends(require_oidc)],
):
    """Same as /login but returns the URL for client-driven navigation."""
    return LoginUrlResponse(url=await oidc_provider.generate_auth_url(session))


@router.get("/callback", name="auth_callback")
async def auth_callback(
    request: Request,
    oidc_provider: Annotated[OIDCProvider, Depends(require_oidc)],
    session: Annotated[SessionContext, Depends(regenerate_session)],
    settings: Annotated[Settings, Depends(get_app_settings)],
):
    """
    OIDC callback handler.
    Exchanges the authorization code for tokens and attaches the user to
    the freshly regenerated session.
    """
    result = await oidc_provider.handle_callback(session, request.query_params)
    claims = result.userinfo

    session.data.user = SessionUser(
        id=claims.sub,
        name=claims.display_name,
        email=claims.email,
        groups=claims.groups,
        picture=claims.picture,
        is_admin=settings.admin_group in claims.groups,
    )
    session.data.token_set = result.token_set
    session.data.token_expiry = result.token_expiry
    await session.save()

    logger.info(f"User {claims.sub} logged in successfully")
    return RedirectResponse(url=settings.dashboard_url, status_code=status.HTTP_302_FOUND)


@router.get("/logout")
async def logout(
    session: CurrentSession,
    oidc_provider: Annotated[OIDCProvider, Depends(require_oidc)],
):
    """Log out the current user and end the provider session if possible."""
    result = await oidc_provider.logout(session)
    if not session.destroyed:
        await session.destroy()

    return RedirectResponse(url=result.logout_url or "/", status_code=status.HTTP_302_FOUND)


@router.get("/user", response_model=SessionUser)
async def get_current_user(user: AuthenticatedUser):
    """Get information about the currently authenticated user."""
    return user


@router.get("/status", response_model=AuthStatus)
async def auth_status(
    session: CurrentSession,
    oidc_provider: Annotated[OIDCProvider, Depends(get_oidc_provider)],
    gate: Annotated[AuthorizationGate, Depends(get_authorization_gate)],
):
    """Authentication state for client polling. Never fails."""
    token_status = gate.token_status(session.data)
    user = session.data.user
    return AuthStatus(
        authenticated=user is not None and token_status != "expired",
        user=user,
        oidc_initialized=oidc_provider.is_initialized,
        token_status=token_status,
    )
