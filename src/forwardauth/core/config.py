"""Configuration with environment variable support.

Settings are read from the environment (and a ``.env`` file) without a
prefix, so an existing deployment's variables keep working:

    CLIENT_ID, CLIENT_SECRET, OIDC_ISSUER_CONFIG_URL, SQLITE_PATH,
    DOMAIN_BASE, UNSAFE_COOKIE_INSECURE
"""

from __future__ import annotations

import re
import tomllib
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def load_config_from_file(path: str | Path) -> dict[str, Any]:
    """Load configuration from a YAML or TOML file.

    Args:
        path: Path to the configuration file (.yaml, .yml, or .toml)

    Returns:
        Configuration dictionary

    Raises:
        FileNotFoundError: If the config file doesn't exist
        ValueError: If the config file has encoding errors, invalid syntax, or unsupported format
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ValueError(f"Config file encoding error in {path}: {e}") from e

    try:
        if path.suffix in (".yaml", ".yml"):
            data = yaml.safe_load(content) or {}
        elif path.suffix == ".toml":
            data = tomllib.loads(content)
        else:
            raise ValueError(f"Unsupported config format: {path.suffix}")
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Invalid TOML in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping")
    return data


class ForwardAuthConfig(BaseSettings):
    """Forward-auth service settings.

    Use get_config() to get a cached instance.

    Example:
        config = get_config()
        print(config.callback_path)
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # OIDC client
    client_id: str = Field(min_length=1, description="OIDC client ID")
    client_secret: str = Field(min_length=1, description="OIDC client secret")
    oidc_issuer_config_url: str = Field(
        description="URL of the provider's .well-known/openid-configuration document",
    )
    oidc_scopes: str = Field(
        default="openid",
        description="Scopes to request, separated by spaces or commas",
    )

    # Storage
    sqlite_path: str | None = Field(
        default=None,
        description="SQLite database path (sessions are kept in memory when unset)",
    )

    # Hosts and cookies
    domain_base: str | None = Field(
        default=None,
        description="Base domain stripped from hosts to find their config, e.g. .example.com",
    )
    unsafe_cookie_insecure: bool = Field(
        default=False,
        description="Drop the Secure attribute and __Host- prefix (plain HTTP only)",
    )
    host_config_dir: str = Field(
        default="/var/lib/oidc/config",
        description="Directory holding per-host config files",
    )

    # HTTP
    bind: str = Field(default="0.0.0.0:3000", description="Listen address")
    forward_auth_path: str = "/oauth2/traefik"
    callback_path: str = "/oauth2/callback"
    logout_path: str = "/oauth2/logout"
    health_path: str = "/healthz"
    request_timeout: float = Field(
        default=10.0,
        gt=0,
        description="Timeout in seconds for discovery and token requests",
    )

    # Logging
    log_level: str = "info"
    log_json: bool = False

    @field_validator("oidc_issuer_config_url")
    @classmethod
    def validate_issuer_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("oidc_issuer_config_url must be an http(s) URL")
        return v

    @field_validator("domain_base")
    @classmethod
    def validate_domain_base(cls, v: str | None) -> str | None:
        if v is not None and not v.startswith("."):
            raise ValueError("domain_base must start with '.'")
        return v

    @field_validator("sqlite_path", "domain_base", mode="before")
    @classmethod
    def empty_to_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("forward_auth_path", "callback_path", "logout_path", "health_path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError(f"Path must start with '/': {v}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.lower()
        if level not in ("debug", "info", "warning", "error", "critical"):
            raise ValueError(f"Invalid log level: {v}")
        return level

    @property
    def scopes(self) -> list[str]:
        return [scope for scope in re.split(r"[\s,]+", self.oidc_scopes) if scope]

    @property
    def cookie_secure(self) -> bool:
        return not self.unsafe_cookie_insecure

    def to_display_dict(self) -> dict[str, Any]:
        """Settings safe to print; the client secret is masked."""
        data = self.model_dump()
        data["client_secret"] = "***"
        return data


_config: ForwardAuthConfig | None = None


def get_config() -> ForwardAuthConfig:
    """Get the global configuration instance.

    Configuration is loaded once from environment variables and cached.
    To reload config (e.g., in tests), call clear_config() first.
    """
    global _config
    if _config is None:
        _config = ForwardAuthConfig()
    return _config


def clear_config() -> None:
    """Clear the cached configuration.

    Call this to force reloading of environment variables on next get_config() call.
    """
    global _config
    _config = None
