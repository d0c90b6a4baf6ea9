"""Shared fixtures: settings and a fake Pocket-ID identity provider."""

import secrets
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from jose import jwt

from pocketid_dashboard.config import Settings

ISSUER = "https://id.example.test"
DISCOVERY_URL = f"{ISSUER}/.well-known/openid-configuration"
CLIENT_ID = "dashboard-client"
MANAGEMENT_URL = f"{ISSUER}/api"
TEST_SESSION_SECRET = "0123456789abcdef0123456789abcdef-test-secret"


class FakeIdentityProvider:
    """In-process stand-in for Pocket-ID, served through ``httpx.MockTransport``.

    Authorization codes are single-use. Every token request is recorded so
    tests can assert on what the relying party sent.
    """

    def __init__(self, *, end_session: bool = True, reachable: bool = True):
        self.end_session = end_session
        self.reachable = reachable
        self.codes: dict[str, dict] = {}
        self.token_requests: list[dict] = []
        self.management_requests: list[httpx.Request] = []
        self.user_groups: dict[str, list[dict]] = {}
        self.token_status = 200
        self.expires_in = 3600
        self.issue_refresh_token = True
        self.management_failures = 0

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def discovery_document(self) -> dict:
        document = {
            "issuer": ISSUER,
            "authorization_endpoint": f"{ISSUER}/authorize",
            "token_endpoint": f"{ISSUER}/api/oidc/token",
            "userinfo_endpoint": f"{ISSUER}/api/oidc/userinfo",
            "jwks_uri": f"{ISSUER}/.well-known/jwks.json",
        }
        if self.end_session:
            document["end_session_endpoint"] = f"{ISSUER}/api/oidc/end-session"
        return document

    def issue_code(self, sub: str = "user-1", groups: list[str] | None = None, **claims) -> str:
        code = secrets.token_urlsafe(16)
        self.codes[code] = {
            "sub": sub,
            "name": "Test User",
            "email": "test.user@example.test",
            "groups": groups if groups is not None else ["users"],
            **claims,
        }
        return code

    def id_token(self, claims: dict) -> str:
        payload = {"iss": ISSUER, "aud": CLIENT_ID, **claims}
        return jwt.encode(payload, "idp-signing-key", algorithm="HS256")

    def handle(self, request: httpx.Request) -> httpx.Response:
        if not self.reachable:
            raise httpx.ConnectError("connection refused", request=request)

        path = request.url.path
        if str(request.url) == DISCOVERY_URL:
            return httpx.Response(200, json=self.discovery_document())
        if path == "/api/oidc/token":
            return self._token(request)
        if path.startswith("/api/users/") or path.startswith("/api/oidc/clients"):
            return self._management(request)
        return httpx.Response(404, json={"error": "not_found"})

    def _token(self, request: httpx.Request) -> httpx.Response:
        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        self.token_requests.append(form)

        if self.token_status != 200:
            return httpx.Response(self.token_status, json={"error": "server_error"})

        if form.get("grant_type") == "authorization_code":
            claims = self.codes.pop(form.get("code", ""), None)
            if claims is None or not form.get("code_verifier"):
                return httpx.Response(400, json={"error": "invalid_grant"})
            body = {
                "access_token": f"access-{secrets.token_hex(8)}",
                "id_token": self.id_token(claims),
                "token_type": "Bearer",
                "expires_in": self.expires_in,
            }
            if self.issue_refresh_token:
                body["refresh_token"] = f"refresh-{secrets.token_hex(8)}"
            return httpx.Response(200, json=body)

        if form.get("grant_type") == "refresh_token":
            return httpx.Response(
                200,
                json={
                    "access_token": f"access-{secrets.token_hex(8)}",
                    "token_type": "Bearer",
                    "expires_in": self.expires_in,
                },
            )

        return httpx.Response(400, json={"error": "unsupported_grant_type"})

    def _management(self, request: httpx.Request) -> httpx.Response:
        self.management_requests.append(request)
        if self.management_failures:
            self.management_failures -= 1
            raise httpx.ConnectTimeout("timed out", request=request)
        if request.headers.get("X-API-KEY") != "management-key":
            return httpx.Response(401, json={"error": "unauthorized"})

        parts = request.url.path.strip("/").split("/")
        if parts[:2] == ["api", "users"] and parts[-1] == "groups":
            return httpx.Response(200, json=self.user_groups.get(parts[2], []))
        if request.url.path == "/api/oidc/clients":
            return httpx.Response(200, json={"data": [{"id": "app-1", "name": "Wiki"}]})
        return httpx.Response(404, json={"error": "not_found"})


def query_params(url: str) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}


def make_settings(**overrides) -> Settings:
    values = {
        "oidc_discovery_url": DISCOVERY_URL,
        "oidc_client_id": CLIENT_ID,
        "oidc_redirect_uri": "http://testserver/auth/callback",
        "oidc_post_logout_redirect_uri": "http://testserver/",
        "session_secret": TEST_SESSION_SECRET,
        "session_cookie_secure": False,
        "session_backend": "memory",
        "dashboard_url": "/dashboard",
        "pocket_id_api_url": MANAGEMENT_URL,
        "pocket_id_api_key": "management-key",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def idp() -> FakeIdentityProvider:
    return FakeIdentityProvider()
