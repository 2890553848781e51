"""OIDC and forward-auth configuration types.

This module defines the provider endpoints and client credentials used for
the authorization-code flow, and the paths and cookie settings of the
forward-auth endpoint.
"""

from __future__ import annotations

from dataclasses import dataclass, field

# Pending authorization state cookie lifetime
STATE_MAX_AGE = 10 * 60


@dataclass
class OIDCOptions:
    """OIDC client configuration.

    Endpoints usually come from the provider's discovery document; see
    ``forwardauth.security.oauth.providers.discover_oidc_options``.
    """

    client_id: str
    client_secret: str
    authorization_endpoint: str
    token_endpoint: str
    scopes: list[str] = field(default_factory=lambda: ["openid"])
    # Timeout for token endpoint requests, in seconds
    timeout: float = 10.0

    def __post_init__(self):
        """Validate credentials and endpoints."""
        if not self.client_id:
            raise ValueError("OIDCOptions requires a client_id")
        if not self.client_secret:
            raise ValueError("OIDCOptions requires a client_secret")
        for name in ("authorization_endpoint", "token_endpoint"):
            value = getattr(self, name)
            if not value.startswith(("http://", "https://")):
                raise ValueError(f"{name} must be an http(s) URL")
        if not self.scopes:
            raise ValueError("OIDCOptions requires at least one scope")


@dataclass
class ForwardAuthOptions:
    """Forward-auth endpoint settings.

    ``secure`` controls both the ``Secure`` cookie attribute and the
    ``__Host-`` name prefix; a ``__Host-`` cookie without ``Secure`` is
    rejected by browsers.
    """

    secure: bool = True
    forward_auth_path: str = "/oauth2/traefik"
    callback_path: str = "/oauth2/callback"
    logout_path: str = "/oauth2/logout"
    health_path: str = "/healthz"
    state_max_age: int = STATE_MAX_AGE

    def __post_init__(self):
        """Validate paths."""
        for name in ("forward_auth_path", "callback_path", "logout_path", "health_path"):
            if not getattr(self, name).startswith("/"):
                raise ValueError(f"{name} must start with '/'")
        if self.callback_path == self.logout_path:
            raise ValueError("callback_path and logout_path must differ")
        if self.state_max_age < 60:
            raise ValueError("state_max_age must be at least 60 seconds")

    @property
    def cookie_prefix(self) -> str:
        return "__Host-" if self.secure else ""

    @property
    def state_cookie_name(self) -> str:
        return f"{self.cookie_prefix}state"

    @property
    def session_cookie_name(self) -> str:
        return f"{self.cookie_prefix}session"
