"""Authorization gate and opportunistic token refresh."""

import asyncio
import logging
from datetime import timedelta
from typing import Annotated, Literal

from fastapi import Depends, Request

from pocketid_dashboard.auth.errors import AdminRequired, AuthenticationRequired
from pocketid_dashboard.auth.middleware import get_session
from pocketid_dashboard.auth.models import SessionData, SessionUser, TokenSet, utcnow
from pocketid_dashboard.auth.oidc import OIDCProvider, compute_token_expiry
from pocketid_dashboard.auth.session import SessionContext, SessionManager

logger = logging.getLogger(__name__)

TokenStatus = Literal["none", "valid", "expiring", "expired"]


class BackgroundRefresher:
    """Runs refresh-token exchanges outside the request that triggered them.

    At most one refresh per session id is in flight in this process.
    Failures are logged and never propagate.
    """

    def __init__(self, oidc_provider: OIDCProvider, session_manager: SessionManager):
        self._oidc = oidc_provider
        self._sessions = session_manager
        self._inflight: dict[str, asyncio.Task] = {}

    @property
    def pending(self) -> list[asyncio.Task]:
        return [task for task in self._inflight.values() if not task.done()]

    def schedule(self, session_id: str, refresh_token: str) -> asyncio.Task | None:
        existing = self._inflight.get(session_id)
        if existing is not None and not existing.done():
            return None

        task = asyncio.create_task(self._refresh(session_id, refresh_token))
        self._inflight[session_id] = task
        task.add_done_callback(lambda t: self._forget(session_id, t))
        return task

    def _forget(self, session_id: str, task: asyncio.Task) -> None:
        if self._inflight.get(session_id) is task:
            del self._inflight[session_id]

    async def _refresh(self, session_id: str, refresh_token: str) -> None:
        try:
            tokens = await self._oidc.refresh_token(refresh_token)

            def apply(data: SessionData) -> None:
                previous = data.token_set
                data.token_set = TokenSet(
                    access_token=tokens["access_token"],
                    id_token=tokens.get("id_token") or (previous.id_token if previous else None),
                    refresh_token=tokens.get("refresh_token") or refresh_token,
                )
                data.token_expiry = compute_token_expiry(tokens.get("expires_in"))

            if await self._sessions.update(session_id, apply):
                logger.info("Refreshed tokens in background")
            else:
                logger.info("Session ended before background refresh completed")
        except Exception as e:
            logger.warning(f"Background token refresh failed: {e}")

    async def drain(self) -> None:
        """Wait for all in-flight refreshes."""
        if self._inflight:
            await asyncio.gather(*list(self._inflight.values()), return_exceptions=True)


class AuthorizationGate:
    """Decides whether a request may proceed on the caller's session."""

    def __init__(self, refresher: BackgroundRefresher, refresh_window: timedelta):
        self.refresher = refresher
        self.refresh_window = refresh_window

    def token_status(self, data: SessionData) -> TokenStatus:
        if data.token_set is None:
            return "none"
        if data.token_expiry is None:
            return "valid"
        remaining = data.token_expiry - utcnow()
        if remaining <= timedelta(0):
            return "expired"
        if remaining <= self.refresh_window:
            return "expiring"
        return "valid"

    async def check(self, session: SessionContext) -> SessionUser:
        data = session.data
        if data.user is None:
            raise AuthenticationRequired()

        status = self.token_status(data)
        if status == "expired":
            logger.info(f"Token expired for user {data.user.id}, destroying session")
            await session.destroy()
            raise AuthenticationRequired("Your session has expired", code="token_expired")

        if status == "expiring" and data.token_set.refresh_token and session.id:
            self.refresher.schedule(session.id, data.token_set.refresh_token)

        return data.user


def get_authorization_gate(request: Request) -> AuthorizationGate:
    return request.app.state.authorization_gate


async def require_authenticated(
    session: Annotated[SessionContext, Depends(get_session)],
    gate: Annotated[AuthorizationGate, Depends(get_authorization_gate)],
) -> SessionUser:
    """Require a logged-in user with a live token."""
    return await gate.check(session)


async def require_admin(
    user: Annotated[SessionUser, Depends(require_authenticated)]
) -> SessionUser:
    """Require authenticated user to be an administrator."""
    if not user.is_admin:
        logger.warning(f"Non-admin user {user.id} attempted to access admin route")
        raise AdminRequired()
    return user


# Type aliases for dependency injection
AuthenticatedUser = Annotated[SessionUser, Depends(require_authenticated)]
