"""Session lifecycle middleware and request-context dependencies.

Every request passes through :class:`SessionMiddleware`, which

1. validates the stored record (a session without a well-formed user is
   destroyed and the caller rejected, except on allow-listed paths),
2. decrypts the token set into a :class:`SessionContext` and re-encrypts
   it when the context is persisted after the handler ran.

The fixation guard is the :func:`regenerate_session` dependency used by
the login callback.
"""

import logging
from typing import Annotated

from fastapi import Depends, Request, Response, status
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from pocketid_dashboard.auth.errors import AuthError, SessionIntegrityError
from pocketid_dashboard.auth.models import AuthErrorResponse
from pocketid_dashboard.auth.session import SessionContext, SessionManager, has_valid_user

logger = logging.getLogger(__name__)

PUBLIC_PATHS = frozenset({"/", "/health", "/auth/callback", "/auth/status", "/auth/logout", "/docs"})
PUBLIC_PREFIXES = ("/auth/login",)


def is_allowlisted(path: str) -> bool:
    """Paths reachable without a valid session (home, static assets, login flow)."""
    if path in PUBLIC_PATHS or path.startswith(PUBLIC_PREFIXES):
        return True
    return "." in path.rsplit("/", 1)[-1]


def wants_json(request: Request) -> bool:
    """API-shaped requests get JSON errors; browser navigations get redirects."""
    if request.url.path.startswith("/api/"):
        return True
    return "text/html" not in request.headers.get("accept", "")


def error_response(request: Request, exc: AuthError) -> Response:
    if exc.status_code == status.HTTP_401_UNAUTHORIZED and not wants_json(request):
        return RedirectResponse(url="/", status_code=status.HTTP_302_FOUND)

    body = AuthErrorResponse(error=exc.title, code=exc.code, message=exc.message)
    return JSONResponse(status_code=exc.status_code, content=body.model_dump())


class SessionMiddleware(BaseHTTPMiddleware):
    """Loads, validates, decrypts and persists the caller's session."""

    def __init__(self, app: ASGIApp, manager: SessionManager):
        super().__init__(app)
        self.manager = manager

    @property
    def cookie_name(self) -> str:
        return self.manager.settings.session_cookie_name

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        cookie = request.cookies.get(self.cookie_name)
        session_id = self.manager.unsign(cookie) if cookie else None
        allowlisted = is_allowlisted(request.url.path)
        clear_cookie = bool(cookie) and session_id is None

        context = SessionContext(self.manager)
        if session_id:
            try:
                record = await self.manager.load_record(session_id)
                if record is None:
                    clear_cookie = True
                else:
                    if not allowlisted and not has_valid_user(record):
                        raise SessionIntegrityError("Session has no valid user")
                    context = SessionContext(
                        self.manager, session_id, self.manager.codec.decode(record)
                    )
            except SessionIntegrityError as e:
                logger.warning(f"Invalid session detected on {request.url.path}: {e}")
                await self.manager.destroy(session_id)
                if not allowlisted:
                    response = error_response(request, SessionIntegrityError())
                    self._clear_cookie(response)
                    return response
                clear_cookie = True

        request.state.session = context
        response = await call_next(request)

        if not context.destroyed and context.changed:
            await context.save()

        if context.id is not None and context.issued:
            self._set_cookie(response, context.id)
        elif context.destroyed or (clear_cookie and context.id is None):
            self._clear_cookie(response)
        return response

    def _set_cookie(self, response: Response, session_id: str) -> None:
        settings = self.manager.settings
        response.set_cookie(
            key=self.cookie_name,
            value=self.manager.sign(session_id),
            max_age=settings.session_max_age_seconds,
            httponly=True,
            secure=settings.cookie_secure,
            samesite=settings.session_cookie_samesite,
            path="/",
        )

    def _clear_cookie(self, response: Response) -> None:
        settings = self.manager.settings
        response.delete_cookie(
            key=self.cookie_name,
            path="/",
            httponly=True,
            secure=settings.cookie_secure,
            samesite=settings.session_cookie_samesite,
        )


def get_session(request: Request) -> SessionContext:
    """The session context attached by :class:`SessionMiddleware`."""
    session = getattr(request.state, "session", None)
    if session is None:
        raise RuntimeError("SessionMiddleware is not installed")
    return session


async def regenerate_session(
    session: Annotated[SessionContext, Depends(get_session)]
) -> SessionContext:
    """Issue a fresh session id before any credentials are attached."""
    await session.regenerate()
    return session


CurrentSession = Annotated[SessionContext, Depends(get_session)]
