"""OIDC forward-auth module.

Bridges an OpenID Connect login to upstream applications that use their own
cookie sessions. The reverse proxy calls the forward-auth endpoint for every
request; unauthenticated browsers are sent through the provider, then the
upstream application's cookies are obtained once and replayed on each
approved request.

Example usage:

    from forwardauth.security.oauth import (
        ForwardAuthenticator,
        ForwardAuthOptions,
        OIDCExchange,
        SessionStore,
        discover_oidc_options,
    )
    from forwardauth.upstream import DirectoryHostConfigLoader, HostConfigResolver

    oidc_options = await discover_oidc_options(
        "https://auth.example.com/.well-known/openid-configuration",
        client_id="...",
        client_secret="...",
    )
    options = ForwardAuthOptions(secure=True)
    resolver = HostConfigResolver(
        DirectoryHostConfigLoader("/var/lib/oidc/config"),
        domain_base=".example.com",
    )
    authenticator = ForwardAuthenticator(
        options=options,
        exchange=OIDCExchange(oidc_options, callback_path=options.callback_path),
        store=SessionStore("/var/lib/oidc/sessions.db"),
        get_host_config=resolver.resolve,
    )

    # Or build everything from the service settings
    authenticator = await create_forward_authenticator(get_config())
"""

from forwardauth.security.oauth.authenticator import (
    ForwardAuthenticator,
    ForwardedRequest,
    create_forward_authenticator,
)
from forwardauth.security.oauth.config import (
    ForwardAuthOptions,
    OIDCOptions,
)
from forwardauth.security.oauth.exchange import (
    AuthorizationRequest,
    ExchangeFailureKind,
    ExchangeResult,
    OIDCExchange,
)
from forwardauth.security.oauth.providers import (
    DiscoveryError,
    OIDCDiscoveryDocument,
    create_oidc_options,
    discover_oidc_options,
    fetch_discovery_document,
)
from forwardauth.security.oauth.session import (
    Session,
    SessionStore,
)

__all__ = [
    # Authenticator
    "ForwardAuthenticator",
    "ForwardedRequest",
    "create_forward_authenticator",
    # Config
    "ForwardAuthOptions",
    "OIDCOptions",
    # Exchange
    "AuthorizationRequest",
    "ExchangeFailureKind",
    "ExchangeResult",
    "OIDCExchange",
    # Providers
    "DiscoveryError",
    "OIDCDiscoveryDocument",
    "create_oidc_options",
    "discover_oidc_options",
    "fetch_discovery_document",
    # Session
    "Session",
    "SessionStore",
]
