"""Tests for configuration loading from environment variables."""

from __future__ import annotations

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from forwardauth.core.config import (
    ForwardAuthConfig,
    clear_config,
    get_config,
    load_config_from_file,
)

REQUIRED_ENV = {
    "CLIENT_ID": "env-client",
    "CLIENT_SECRET": "env-secret",
    "OIDC_ISSUER_CONFIG_URL": "https://idp.test/.well-known/openid-configuration",
}


def make_config(**env: str) -> ForwardAuthConfig:
    """Build settings from exactly the given environment."""
    with patch.dict(os.environ, {**REQUIRED_ENV, **env}, clear=True):
        return ForwardAuthConfig(_env_file=None)


class TestForwardAuthConfig:
    """Test ForwardAuthConfig settings."""

    def test_required_values(self) -> None:
        """Test the OIDC client settings are read without a prefix."""
        config = make_config()
        assert config.client_id == "env-client"
        assert config.client_secret == "env-secret"
        assert config.oidc_issuer_config_url == REQUIRED_ENV["OIDC_ISSUER_CONFIG_URL"]

    def test_default_values(self) -> None:
        """Test default values."""
        config = make_config()
        assert config.sqlite_path is None
        assert config.domain_base is None
        assert config.unsafe_cookie_insecure is False
        assert config.host_config_dir == "/var/lib/oidc/config"
        assert config.bind == "0.0.0.0:3000"
        assert config.forward_auth_path == "/oauth2/traefik"
        assert config.callback_path == "/oauth2/callback"
        assert config.logout_path == "/oauth2/logout"
        assert config.health_path == "/healthz"
        assert config.request_timeout == 10.0
        assert config.log_level == "info"
        assert config.log_json is False

    def test_missing_required(self) -> None:
        """Test startup settings fail without client credentials."""
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(ValidationError):
                ForwardAuthConfig(_env_file=None)

    def test_env_override_sqlite_path(self) -> None:
        """Test SQLITE_PATH env var."""
        assert make_config(SQLITE_PATH="/tmp/sessions.db").sqlite_path == "/tmp/sessions.db"

    def test_env_override_service_settings(self) -> None:
        """Test HOST_CONFIG_DIR, BIND and LOG_JSON env vars."""
        config = make_config(HOST_CONFIG_DIR="/etc/hosts.d", BIND="127.0.0.1:8080", LOG_JSON="1")
        assert config.host_config_dir == "/etc/hosts.d"
        assert config.bind == "127.0.0.1:8080"
        assert config.log_json is True

    def test_empty_values_unset(self) -> None:
        """Test empty SQLITE_PATH and DOMAIN_BASE mean unset."""
        config = make_config(SQLITE_PATH="", DOMAIN_BASE=" ")
        assert config.sqlite_path is None
        assert config.domain_base is None

    def test_domain_base(self) -> None:
        """Test DOMAIN_BASE must be a suffix starting with a dot."""
        assert make_config(DOMAIN_BASE=".example.com").domain_base == ".example.com"
        with pytest.raises(ValidationError, match="must start with '.'"):
            make_config(DOMAIN_BASE="example.com")

    def test_insecure_cookies(self) -> None:
        """Test UNSAFE_COOKIE_INSECURE disables secure cookies."""
        assert make_config().cookie_secure is True
        assert make_config(UNSAFE_COOKIE_INSECURE="true").cookie_secure is False

    def test_scopes(self) -> None:
        """Test OIDC_SCOPES accepts spaces and commas."""
        assert make_config().scopes == ["openid"]
        assert make_config(OIDC_SCOPES="openid, profile email").scopes == ["openid", "profile", "email"]

    def test_issuer_must_be_http(self) -> None:
        with pytest.raises(ValidationError, match="http"):
            make_config(OIDC_ISSUER_CONFIG_URL="idp.test/.well-known/openid-configuration")

    def test_paths_must_be_absolute(self) -> None:
        with pytest.raises(ValidationError, match="Path must start with '/'"):
            make_config(CALLBACK_PATH="oauth2/callback")

    def test_log_level(self) -> None:
        """Test LOG_LEVEL is normalized and validated."""
        assert make_config(LOG_LEVEL="DEBUG").log_level == "debug"
        with pytest.raises(ValidationError, match="Invalid log level"):
            make_config(LOG_LEVEL="verbose")

    def test_request_timeout_positive(self) -> None:
        with pytest.raises(ValidationError):
            make_config(REQUEST_TIMEOUT="0")

    def test_display_masks_secret(self) -> None:
        """Test the client secret never appears in display output."""
        data = make_config().to_display_dict()
        assert data["client_secret"] == "***"
        assert data["client_id"] == "env-client"


class TestGlobalConfig:
    """Test global config caching."""

    def setup_method(self) -> None:
        clear_config()

    def teardown_method(self) -> None:
        clear_config()

    def test_get_config_cached(self) -> None:
        """Test get_config returns the same instance."""
        with patch.dict(os.environ, REQUIRED_ENV, clear=True):
            assert get_config() is get_config()

    def test_clear_config_reloads(self) -> None:
        """Test clear_config picks up new environment values."""
        with patch.dict(os.environ, REQUIRED_ENV, clear=True):
            first = get_config()
        clear_config()
        with patch.dict(os.environ, {**REQUIRED_ENV, "CLIENT_ID": "other"}, clear=True):
            second = get_config()

        assert first is not second
        assert second.client_id == "other"


class TestLoadConfigFromFile:
    """Test YAML and TOML file loading."""

    def test_yaml(self, tmp_path) -> None:
        path = tmp_path / "app.yaml"
        path.write_text("login:\n  url: http://upstream.test/login\n")
        assert load_config_from_file(path) == {"login": {"url": "http://upstream.test/login"}}

    def test_empty_yaml(self, tmp_path) -> None:
        path = tmp_path / "empty.yml"
        path.write_text("")
        assert load_config_from_file(path) == {}

    def test_toml(self, tmp_path) -> None:
        path = tmp_path / "app.toml"
        path.write_text('timeout = 5\n\n[login]\nurl = "http://upstream.test/login"\n')
        assert load_config_from_file(path) == {
            "timeout": 5,
            "login": {"url": "http://upstream.test/login"},
        }

    def test_missing_file(self, tmp_path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config_from_file(tmp_path / "missing.yaml")

    def test_unsupported_format(self, tmp_path) -> None:
        path = tmp_path / "app.json"
        path.write_text("{}")
        with pytest.raises(ValueError, match="Unsupported config format"):
            load_config_from_file(path)

    def test_invalid_yaml(self, tmp_path) -> None:
        path = tmp_path / "app.yaml"
        path.write_text("login: [unclosed\n")
        with pytest.raises(ValueError, match="Invalid YAML"):
            load_config_from_file(path)

    def test_invalid_toml(self, tmp_path) -> None:
        path = tmp_path / "app.toml"
        path.write_text("login = \n")
        with pytest.raises(ValueError, match="Invalid TOML"):
            load_config_from_file(path)

    def test_non_mapping(self, tmp_path) -> None:
        """Test a top-level list is rejected."""
        path = tmp_path / "app.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError, match="must contain a mapping"):
            load_config_from_file(path)
