"""Authentication data models."""

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Base model serialised with camelCase keys on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SessionUser(CamelModel):
    """The logged-in user as stored on the session."""

    id: str = Field(..., min_length=1, description="Subject (user ID)")
    name: str | None = None
    email: str | None = None
    groups: list[str] = Field(default_factory=list, description="Group memberships")
    picture: str | None = None
    is_admin: bool = False


class TokenSet(BaseModel):
    """Provider tokens kept server-side only."""

    access_token: str
    id_token: str | None = None
    refresh_token: str | None = None


class SessionData(CamelModel):
    """Decrypted view of a session record."""

    user: SessionUser | None = None
    token_set: TokenSet | None = None
    token_expiry: datetime | None = None
    code_verifier: str | None = None
    state: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.model_dump(exclude_none=True)


class ProviderMetadata(BaseModel):
    """Subset of the OIDC discovery document used by the relying party."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    userinfo_endpoint: str | None = None
    end_session_endpoint: str | None = None
    jwks_uri: str | None = None


class IDTokenClaims(BaseModel):
    """Identity claims read from the ID token payload."""

    model_config = ConfigDict(extra="ignore")

    sub: str = Field(..., min_length=1, description="Subject (user ID)")
    name: str | None = None
    given_name: str | None = None
    family_name: str | None = None
    preferred_username: str | None = None
    email: str | None = None
    groups: list[str] = Field(default_factory=list)
    picture: str | None = None

    @property
    def display_name(self) -> str:
        if self.name:
            return self.name
        full_name = " ".join(part for part in (self.given_name, self.family_name) if part)
        return full_name or self.preferred_username or self.sub


class CallbackResult(BaseModel):
    """Outcome of a successful authorization-code exchange."""

    token_set: TokenSet
    userinfo: IDTokenClaims
    token_expiry: datetime | None = None


class LogoutResult(CamelModel):
    logout_url: str | None = None
    success: bool = True


class LoginUrlResponse(BaseModel):
    url: str


class AuthStatus(CamelModel):
    authenticated: bool
    user: SessionUser | None = None
    oidc_initialized: bool
    token_status: Literal["none", "valid", "expiring", "expired"]


class AuthErrorResponse(BaseModel):
    """Authentication error response."""

    error: str
    code: str
    message: str
