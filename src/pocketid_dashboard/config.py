"""Configuration management for the Pocket-ID dashboard."""

import json
import logging
import os
from functools import lru_cache
from typing import Any, Literal

import boto3
from fastapi import Request
from pydantic import Field, field_validator
from pydantic.fields import FieldInfo
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

logger = logging.getLogger(__name__)

MIN_SESSION_SECRET_LENGTH = 32

_PLACEHOLDER_SECRETS = ("your-secret-key",)
_PLACEHOLDER_FRAGMENTS = ("CHANGE_ME", "some long secret here")


def get_aws_secrets(secret_id: str, region_name: str) -> dict:
    """Fetch a JSON secret from AWS Secrets Manager."""
    try:
        session = boto3.session.Session()
        client = session.client(service_name="secretsmanager", region_name=region_name)
        response = client.get_secret_value(SecretId=secret_id)
        return json.loads(response["SecretString"])
    except Exception as e:
        logger.warning(f"Failed to fetch AWS secrets: {e}. Falling back to environment variables.")
        return {}


class AwsSecretsManagerSource(PydanticBaseSettingsSource):
    """Settings source backed by a JSON secret in AWS Secrets Manager.

    Enabled only when ``AWS_SECRETS_ID`` is set. Secret keys are matched
    case-insensitively against the settings field names.
    """

    def get_field_value(self, field: FieldInfo, field_name: str) -> tuple[Any, str, bool]:
        return None, field_name, False

    def __call__(self) -> dict[str, Any]:
        secret_id = os.getenv("AWS_SECRETS_ID")
        if not secret_id:
            return {}

        secrets = get_aws_secrets(secret_id, os.getenv("AWS_REGION", "us-east-2"))
        fields = self.settings_cls.model_fields
        return {key.lower(): value for key, value in secrets.items() if key.lower() in fields}


class Settings(BaseSettings):
    """Application settings loaded from environment variables, .env and AWS Secrets Manager."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # OIDC provider (Pocket-ID)
    oidc_discovery_url: str = Field(..., min_length=1, description="OIDC discovery document URL")
    oidc_client_id: str = Field(..., min_length=1, description="OIDC client identifier")
    oidc_client_secret: str | None = Field(None, description="Optional; PKCE works without it")
    oidc_redirect_uri: str = Field(default="http://localhost:3000/auth/callback")
    oidc_post_logout_redirect_uri: str | None = Field(default=None)
    oidc_scopes: str = Field(default="openid profile email groups")

    # Authorization
    admin_group: str = Field(default="admin", description="Group name that grants admin rights")
    dashboard_url: str = Field(default="/", description="Where to send the browser after login")

    # Session
    session_secret: str = Field(..., description="Secret for cookie signing and token encryption")
    session_cookie_name: str = Field(default="pocket_id_dashboard.sid")
    session_cookie_secure: bool | None = Field(default=None)
    session_cookie_samesite: Literal["lax", "strict", "none"] = Field(default="lax")
    session_max_age_seconds: int = Field(default=86400, gt=0)
    session_backend: Literal["memory", "redis", "database"] = Field(default="memory")
    session_cleanup_interval_minutes: int = Field(default=60, gt=0)
    token_refresh_window_seconds: int = Field(default=300, ge=0)

    # Storage
    redis_url: str | None = Field(default=None)
    database_url: str = Field(default="sqlite+aiosqlite:///./data/sessions.db")

    # Outbound HTTP
    http_timeout_s: float = Field(default=10.0, gt=0)

    # Pocket-ID management API
    pocket_id_api_url: str | None = Field(default=None)
    pocket_id_api_key: str | None = Field(default=None)

    # Server
    server_host: str = Field(default="0.0.0.0")
    server_port: int = Field(default=3000)
    server_env: str = Field(default="development")
    cors_origins: str = Field(default="http://localhost:5173")

    # Logging
    log_level: str = Field(default="INFO")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            AwsSecretsManagerSource(settings_cls),
            file_secret_settings,
        )

    @field_validator("session_secret")
    @classmethod
    def check_session_secret_strength(cls, v: str) -> str:
        if len(v) < MIN_SESSION_SECRET_LENGTH:
            raise ValueError(
                f"SESSION_SECRET must be at least {MIN_SESSION_SECRET_LENGTH} characters"
            )
        if v in _PLACEHOLDER_SECRETS or any(p in v for p in _PLACEHOLDER_FRAGMENTS):
            raise ValueError("SESSION_SECRET is using a placeholder value")
        return v

    @property
    def is_production(self) -> bool:
        return self.server_env.lower() == "production"

    @property
    def cookie_secure(self) -> bool:
        if self.session_cookie_secure is None:
            return self.is_production
        return self.session_cookie_secure

    @property
    def scopes(self) -> list[str]:
        return self.oidc_scopes.split()

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def pocket_id_configured(self) -> bool:
        return bool(self.pocket_id_api_url and self.pocket_id_api_key)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def get_app_settings(request: Request) -> Settings:
    """Settings the running application was created with."""
    return request.app.state.settings
