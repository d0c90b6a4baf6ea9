"""Main FastAPI application for the Pocket-ID dashboard."""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import timedelta

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pocketid_dashboard import __version__
from pocketid_dashboard.admin import router as admin_router
from pocketid_dashboard.config import Settings, get_settings
from pocketid_dashboard.logging_utils import configure_logging
from pocketid_dashboard.auth.cleanup import SessionCleanup
from pocketid_dashboard.auth.errors import AuthError
from pocketid_dashboard.auth.gate import AuthorizationGate, BackgroundRefresher
from pocketid_dashboard.auth.middleware import SessionMiddleware, error_response
from pocketid_dashboard.auth.oidc import OIDCProvider
from pocketid_dashboard.auth.routes import router as auth_router
from pocketid_dashboard.auth.session import SessionManager, SessionStore, create_session_store
from pocketid_dashboard.services.pocket_id import PocketIDClient

logger = logging.getLogger(__name__)


@dataclass
class Dashboard:
    """Components owned by one application instance."""

    settings: Settings
    store: SessionStore
    session_manager: SessionManager
    oidc_provider: OIDCProvider
    refresher: BackgroundRefresher
    authorization_gate: AuthorizationGate
    pocket_id_client: PocketIDClient | None
    cleanup: SessionCleanup

    @classmethod
    def build(
        cls,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
        store: SessionStore | None = None,
    ) -> "Dashboard":
        store = store if store is not None else create_session_store(settings)
        session_manager = SessionManager(store, settings)
        oidc_provider = OIDCProvider(settings, transport=transport)
        refresher = BackgroundRefresher(oidc_provider, session_manager)
        gate = AuthorizationGate(
            refresher, timedelta(seconds=settings.token_refresh_window_seconds)
        )

        pocket_id_client = None
        if settings.pocket_id_configured:
            pocket_id_client = PocketIDClient(
                settings.pocket_id_api_url,
                settings.pocket_id_api_key,
                timeout_s=settings.http_timeout_s,
                transport=transport,
            )
        else:
            logger.warning("POCKET_ID_API_URL/POCKET_ID_API_KEY not set; admin routes disabled")

        return cls(
            settings=settings,
            store=store,
            session_manager=session_manager,
            oidc_provider=oidc_provider,
            refresher=refresher,
            authorization_gate=gate,
            pocket_id_client=pocket_id_client,
            cleanup=SessionCleanup(store, settings.session_cleanup_interval_minutes),
        )

    def attach(self, app: FastAPI) -> None:
        app.state.dashboard = self
        app.state.settings = self.settings
        app.state.session_manager = self.session_manager
        app.state.oidc_provider = self.oidc_provider
        app.state.refresher = self.refresher
        app.state.authorization_gate = self.authorization_gate
        app.state.pocket_id_client = self.pocket_id_client
        app.state.cleanup = self.cleanup


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    dashboard: Dashboard = app.state.dashboard
    logger.info("Starting Pocket-ID dashboard...")

    await dashboard.store.initialize()

    try:
        await dashboard.oidc_provider.initialize()
    except AuthError as e:
        logger.error(f"Failed to initialize OIDC client: {e}")
        logger.warning("Continuing without OIDC; /auth routes will return 503")

    dashboard.cleanup.start()

    yield

    logger.info("Shutting down Pocket-ID dashboard...")
    await dashboard.cleanup.stop()
    await dashboard.refresher.drain()
    await dashboard.store.close()


def create_app(
    settings: Settings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    store: SessionStore | None = None,
) -> FastAPI:
    """Build the application. ``transport`` and ``store`` exist for tests."""
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Pocket-ID Dashboard",
        description="Access dashboard in front of the Pocket-ID identity provider",
        version=__version__,
        lifespan=lifespan,
    )
    dashboard = Dashboard.build(settings, transport=transport, store=store)
    dashboard.attach(app)

    # Middleware added last runs first: CORS wraps the session layer
    app.add_middleware(SessionMiddleware, manager=dashboard.session_manager)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(auth_router)
    app.include_router(admin_router)

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "service": "pocketid-dashboard",
            "oidc_initialized": dashboard.oidc_provider.is_initialized,
        }

    @app.get("/")
    async def root():
        """Root endpoint with service information."""
        return {
            "service": "Pocket-ID Dashboard",
            "version": __version__,
            "login_url": "/auth/login",
            "status_url": "/auth/status",
        }

    @app.exception_handler(AuthError)
    async def auth_exception_handler(request: Request, exc: AuthError):
        return error_response(request, exc)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """Custom HTTP exception handler."""
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail, "status_code": exc.status_code},
        )

    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("pocketid_dashboard.main:create_app", factory=True, host="0.0.0.0", port=3000, reload=True)
