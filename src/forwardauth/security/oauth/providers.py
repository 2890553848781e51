"""OIDC provider discovery.

Fetches a provider's ``.well-known/openid-configuration`` document and
turns it into OIDCOptions.
"""

from __future__ import annotations

import httpx
import structlog
from pydantic import BaseModel, ValidationError, field_validator

from forwardauth.security.oauth.config import OIDCOptions

logger = structlog.get_logger()


class DiscoveryError(Exception):
    """Raised when the discovery document cannot be fetched or is invalid."""


class OIDCDiscoveryDocument(BaseModel):
    """The parts of an OIDC discovery document the service relies on."""

    authorization_endpoint: str
    token_endpoint: str
    scopes_supported: list[str] = []
    issuer: str | None = None

    @field_validator("authorization_endpoint", "token_endpoint")
    @classmethod
    def validate_endpoint(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("endpoint must be an http(s) URL")
        return v


async def fetch_discovery_document(url: str, timeout: float = 10.0) -> OIDCDiscoveryDocument:
    """Fetch and validate an OIDC discovery document.

    Args:
        url: Full URL of the discovery document.
        timeout: Request timeout in seconds.

    Returns:
        The validated document.

    Raises:
        DiscoveryError: On network errors, non-2xx responses, or invalid content.
    """
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.get(url, headers={"Accept": "application/json"})
    except httpx.HTTPError as e:
        raise DiscoveryError(f"Failed to fetch OIDC configuration from {url}: {e}") from e

    if not response.is_success:
        raise DiscoveryError(
            f"Failed to fetch OIDC configuration from {url}: {response.status_code}"
        )

    try:
        return OIDCDiscoveryDocument.model_validate_json(response.content)
    except ValidationError as e:
        raise DiscoveryError(f"Invalid OIDC configuration at {url}: {e}") from e


def create_oidc_options(
    document: OIDCDiscoveryDocument,
    client_id: str,
    client_secret: str,
    scopes: list[str] | None = None,
    timeout: float = 10.0,
) -> OIDCOptions:
    """Create OIDCOptions from a discovery document.

    Requested scopes the provider does not advertise are logged but still
    requested; ``scopes_supported`` is advisory in OpenID Connect Discovery.

    Args:
        document: Validated discovery document
        client_id: OAuth client ID
        client_secret: OAuth client secret
        scopes: Scopes to request (defaults to openid)
        timeout: Token endpoint request timeout in seconds

    Returns:
        Configured OIDCOptions
    """
    scopes = scopes or ["openid"]
    if document.scopes_supported:
        unsupported = [s for s in scopes if s not in document.scopes_supported]
        if unsupported:
            logger.warning("Provider does not advertise requested scopes", scopes=unsupported)

    return OIDCOptions(
        client_id=client_id,
        client_secret=client_secret,
        authorization_endpoint=document.authorization_endpoint,
        token_endpoint=document.token_endpoint,
        scopes=scopes,
        timeout=timeout,
    )


async def discover_oidc_options(
    config_url: str,
    client_id: str,
    client_secret: str,
    scopes: list[str] | None = None,
    timeout: float = 10.0,
) -> OIDCOptions:
    """Fetch the discovery document and build OIDCOptions from it."""
    document = await fetch_discovery_document(config_url, timeout=timeout)
    logger.info(
        "OIDC configuration loaded",
        issuer=document.issuer,
        authorization_endpoint=document.authorization_endpoint,
    )
    return create_oidc_options(
        document,
        client_id=client_id,
        client_secret=client_secret,
        scopes=scopes,
        timeout=timeout,
    )
