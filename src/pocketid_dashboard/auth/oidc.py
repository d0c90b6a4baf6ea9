"""OIDC relying-party client for the Pocket-ID identity provider."""

import base64
import hashlib
import logging
import secrets
from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import Annotated, Any
from urllib.parse import urlencode

import httpx
from fastapi import Depends, Request
from jose import jwt, JWTError
from pydantic import ValidationError

from pocketid_dashboard.config import Settings
from pocketid_dashboard.auth.errors import (
    AuthError,
    OIDCConfigurationError,
    OIDCDiscoveryError,
    OIDCNotInitializedError,
    ProviderError,
    SessionLostError,
    StateMismatchError,
    TokenExchangeError,
    TokenRefreshError,
)
from pocketid_dashboard.auth.models import (
    CallbackResult,
    IDTokenClaims,
    LogoutResult,
    ProviderMetadata,
    TokenSet,
    utcnow,
)
from pocketid_dashboard.auth.session import SessionContext

logger = logging.getLogger(__name__)


def compute_token_expiry(expires_in: Any) -> datetime | None:
    """Absolute expiry for a token lifetime given in seconds."""
    try:
        seconds = int(expires_in)
    except (TypeError, ValueError):
        return None
    return utcnow() + timedelta(seconds=seconds)


def generate_pkce_pair() -> tuple[str, str]:
    """Generate a PKCE code verifier and its S256 challenge."""
    code_verifier = secrets.token_urlsafe(64)
    code_challenge = base64.urlsafe_b64encode(
        hashlib.sha256(code_verifier.encode()).digest()
    ).decode().rstrip("=")
    return code_verifier, code_challenge


class OIDCProvider:
    """Pocket-ID OIDC authentication provider.

    Discovery runs once via :meth:`initialize`; until it succeeds every
    protocol operation raises :class:`OIDCNotInitializedError`.
    """

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None):
        self.settings = settings
        self._transport = transport
        self._metadata: ProviderMetadata | None = None

    @property
    def is_initialized(self) -> bool:
        return self._metadata is not None

    @property
    def metadata(self) -> ProviderMetadata:
        if self._metadata is None:
            raise OIDCNotInitializedError("OIDC client not initialized")
        return self._metadata

    def _http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.settings.http_timeout_s, transport=self._transport)

    async def initialize(self) -> ProviderMetadata:
        """Fetch the discovery document and publish the provider metadata."""
        if not self.settings.oidc_discovery_url:
            raise OIDCConfigurationError("OIDC_DISCOVERY_URL environment variable is not set")
        if not self.settings.oidc_client_id:
            raise OIDCConfigurationError("OIDC_CLIENT_ID environment variable is not set")

        logger.info(f"Discovering OIDC provider at: {self.settings.oidc_discovery_url}")
        try:
            async with self._http_client() as client:
                resp = await client.get(self.settings.oidc_discovery_url)
                resp.raise_for_status()
                metadata = ProviderMetadata.model_validate(resp.json())
        except (httpx.HTTPError, ValueError) as e:
            raise OIDCDiscoveryError(f"OIDC discovery failed: {e}") from e

        self._metadata = metadata
        logger.info(f"OIDC client initialized; authorization endpoint: {metadata.authorization_endpoint}")
        return metadata

    async def generate_auth_url(self, session: SessionContext) -> str:
        """Start a PKCE login and return the provider authorization URL.

        The verifier and state are persisted before returning so the
        callback can find them even if the browser is fast.
        """
        metadata = self.metadata

        code_verifier, code_challenge = generate_pkce_pair()
        state = secrets.token_urlsafe(32)

        session.data.code_verifier = code_verifier
        session.data.state = state
        await session.save()

        params = {
            "client_id": self.settings.oidc_client_id,
            "response_type": "code",
            "redirect_uri": self.settings.oidc_redirect_uri,
            "scope": " ".join(self.settings.scopes),
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
        }

        separator = "&" if "?" in metadata.authorization_endpoint else "?"
        return f"{metadata.authorization_endpoint}{separator}{urlencode(params)}"

    async def handle_callback(
        self, session: SessionContext, query: Mapping[str, str]
    ) -> CallbackResult:
        """Complete the login: check state, exchange the code, read the ID token."""
        metadata = self.metadata

        code_verifier = session.data.code_verifier
        expected_state = session.data.state
        if not code_verifier:
            raise SessionLostError()

        # verifier and state are single-use
        session.data.code_verifier = None
        session.data.state = None

        if query.get("error"):
            logger.error(f"OIDC error: {query.get('error')} - {query.get('error_description')}")
            raise ProviderError()

        received_state = (query.get("state") or "").encode()
        if not expected_state or not secrets.compare_digest(received_state, expected_state.encode()):
            logger.warning("State parameter mismatch on callback")
            raise StateMismatchError()

        code = query.get("code")
        if not code:
            raise ProviderError("Missing authorization code")

        tokens = await self._token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.settings.oidc_redirect_uri,
                "code_verifier": code_verifier,
            },
            TokenExchangeError,
        )

        if not tokens.get("access_token"):
            raise TokenExchangeError("Provider did not return an access token")

        token_set = TokenSet(
            access_token=tokens["access_token"],
            id_token=tokens.get("id_token"),
            refresh_token=tokens.get("refresh_token"),
        )
        userinfo = self.extract_claims(token_set.id_token, metadata)

        return CallbackResult(
            token_set=token_set,
            userinfo=userinfo,
            token_expiry=compute_token_expiry(tokens.get("expires_in")),
        )

    def extract_claims(self, id_token: str | None, metadata: ProviderMetadata) -> IDTokenClaims:
        """Read identity claims from an ID token received from the token endpoint."""
        if not id_token:
            raise TokenExchangeError("Provider did not return an ID token")

        try:
            payload = jwt.get_unverified_claims(id_token)
        except JWTError as e:
            raise TokenExchangeError("Malformed ID token") from e

        if payload.get("iss") and payload["iss"] != metadata.issuer:
            logger.error(f"ID token issuer mismatch: {payload['iss']}")
            raise TokenExchangeError("ID token issuer mismatch")

        audience = payload.get("aud")
        audiences = audience if isinstance(audience, list) else [audience]
        if audience is not None and self.settings.oidc_client_id not in audiences:
            logger.error("ID token audience mismatch")
            raise TokenExchangeError("ID token audience mismatch")

        try:
            return IDTokenClaims.model_validate(payload)
        except ValidationError as e:
            raise TokenExchangeError("ID token is missing required claims") from e

    async def refresh_token(self, refresh_token: str) -> dict:
        """Exchange a refresh token for a new token set."""
        return await self._token_request(
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
            TokenRefreshError,
        )

    async def _token_request(self, data: dict, error_cls: type[AuthError]) -> dict:
        data = {**data, "client_id": self.settings.oidc_client_id}
        if self.settings.oidc_client_secret:
            data["client_secret"] = self.settings.oidc_client_secret

        try:
            async with self._http_client() as client:
                resp = await client.post(
                    self.metadata.token_endpoint,
                    data=data,
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                )
        except httpx.HTTPError as e:
            logger.error(f"Token request to provider failed: {e}")
            raise error_cls() from e

        if resp.status_code != 200:
            try:
                error = resp.json().get("error", "unknown_error")
            except ValueError:
                error = "unknown_error"
            logger.error(f"Token request failed: HTTP {resp.status_code} ({error})")
            raise error_cls()

        try:
            return resp.json()
        except ValueError as e:
            raise error_cls() from e

    def build_logout_url(self, id_token: str | None) -> str | None:
        """End-session URL, or None if the provider does not advertise one."""
        if self._metadata is None or not self._metadata.end_session_endpoint:
            return None

        params = {}
        if id_token:
            params["id_token_hint"] = id_token
        if self.settings.oidc_post_logout_redirect_uri:
            params["post_logout_redirect_uri"] = self.settings.oidc_post_logout_redirect_uri

        endpoint = self._metadata.end_session_endpoint
        if not params:
            return endpoint
        separator = "&" if "?" in endpoint else "?"
        return f"{endpoint}{separator}{urlencode(params)}"

    async def logout(self, session: SessionContext) -> LogoutResult:
        """Destroy the session and return the provider logout URL if there is one."""
        token_set = session.data.token_set
        if token_set is None:
            logger.info("No token set in session, nothing to logout")
            return LogoutResult(success=True)

        logout_url = self.build_logout_url(token_set.id_token)
        await session.destroy()

        if logout_url:
            return LogoutResult(logout_url=logout_url)
        return LogoutResult(success=True)


def get_oidc_provider(request: Request) -> OIDCProvider:
    return request.app.state.oidc_provider


async def require_oidc(
    oidc_provider: Annotated[OIDCProvider, Depends(get_oidc_provider)]
) -> OIDCProvider:
    """Reject with 503 until discovery has succeeded."""
    if not oidc_provider.is_initialized:
        raise OIDCNotInitializedError()
    return oidc_provider
