"""Tests for settings validation."""

import pytest
from pydantic import ValidationError

from pocketid_dashboard.config import Settings

from conftest import make_settings


def test_defaults(settings):
    assert settings.scopes == ["openid", "profile", "email", "groups"]
    assert settings.admin_group == "admin"
    assert settings.session_cookie_name == "pocket_id_dashboard.sid"
    assert settings.token_refresh_window_seconds == 300
    assert settings.pocket_id_configured


def test_short_session_secret_refuses_to_start():
    with pytest.raises(ValidationError, match="at least 32 characters"):
        make_settings(session_secret="too-short")


@pytest.mark.parametrize(
    "secret",
    ["CHANGE_ME_to_a_real_secret_value_please_0000", "some long secret here, really quite long"],
)
def test_placeholder_session_secret_refuses_to_start(secret):
    with pytest.raises(ValidationError, match="placeholder"):
        make_settings(session_secret=secret)


def test_missing_required_settings_refuse_to_start(monkeypatch):
    for name in ("OIDC_DISCOVERY_URL", "OIDC_CLIENT_ID", "SESSION_SECRET", "AWS_SECRETS_ID"):
        monkeypatch.delenv(name, raising=False)

    with pytest.raises(ValidationError) as exc_info:
        Settings(_env_file=None)

    missing = {error["loc"][0] for error in exc_info.value.errors()}
    assert {"oidc_discovery_url", "oidc_client_id", "session_secret"} <= missing


def test_settings_read_from_environment(monkeypatch):
    monkeypatch.setenv("OIDC_DISCOVERY_URL", "https://id.example.test/.well-known/openid-configuration")
    monkeypatch.setenv("OIDC_CLIENT_ID", "from-env")
    monkeypatch.setenv("SESSION_SECRET", "e" * 40)
    monkeypatch.setenv("CORS_ORIGINS", "https://a.example.test, https://b.example.test")
    monkeypatch.delenv("AWS_SECRETS_ID", raising=False)

    settings = Settings(_env_file=None)

    assert settings.oidc_client_id == "from-env"
    assert settings.cors_origin_list == ["https://a.example.test", "https://b.example.test"]


def test_cookie_secure_follows_environment_unless_set():
    assert make_settings(session_cookie_secure=None, server_env="production").cookie_secure
    assert not make_settings(session_cookie_secure=None, server_env="development").cookie_secure
    assert make_settings(session_cookie_secure=True).cookie_secure
