"""Authorization-code flow against the configured OIDC provider.

The redirect URI is derived from the origin of each forwarded request, so one
client registration can serve several virtual hosts, each with its own
callback URL. Token exchange failures are classified and returned rather
than raised.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any

import httpx
import structlog
from authlib.common.security import generate_token
from authlib.integrations.base_client import OAuthError
from authlib.integrations.httpx_client import AsyncOAuth2Client
from authlib.oauth2.rfc6749.parameters import prepare_grant_uri

from forwardauth.security.oauth.config import OIDCOptions

logger = structlog.get_logger()

STATE_LENGTH = 43


class ExchangeFailureKind(enum.Enum):
    """Why a code exchange failed."""

    INVALID_GRANT = "invalid_grant"  # provider rejected the request
    TRANSPORT_FAILURE = "transport_failure"  # could not talk to the provider
    UNEXPECTED = "unexpected"


@dataclass
class AuthorizationRequest:
    """Where to send the browser, and the state it must come back with."""

    url: str
    state: str


@dataclass
class ExchangeResult:
    """Outcome of an authorization-code exchange.

    Exactly one of ``token`` or ``failure`` is set.
    """

    token: dict[str, Any] | None = None
    failure: ExchangeFailureKind | None = None
    detail: str | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def failed(cls, kind: ExchangeFailureKind, detail: str) -> ExchangeResult:
        return cls(failure=kind, detail=detail)


class OIDCExchange:
    """Builds authorization URLs and exchanges codes for tokens."""

    def __init__(self, options: OIDCOptions, callback_path: str = "/oauth2/callback"):
        """Initialize the exchange adapter.

        Args:
            options: Client credentials and provider endpoints
            callback_path: Path appended to the request origin to form the redirect URI
        """
        self._options = options
        self._callback_path = callback_path

    def redirect_uri(self, callback_origin: str) -> str:
        return f"{callback_origin.rstrip('/')}{self._callback_path}"

    def build_authorization_request(self, callback_origin: str) -> AuthorizationRequest:
        """Create the provider authorization URL for a new login.

        Args:
            callback_origin: Origin of the forwarded request, e.g. ``https://app.example.com``

        Returns:
            The authorization URL and the freshly generated state value.
        """
        state = generate_token(STATE_LENGTH)
        url = prepare_grant_uri(
            self._options.authorization_endpoint,
            client_id=self._options.client_id,
            response_type="code",
            redirect_uri=self.redirect_uri(callback_origin),
            scope=self._options.scopes,
            state=state,
        )
        return AuthorizationRequest(url=url, state=state)

    async def exchange_code(self, code: str, callback_origin: str) -> ExchangeResult:
        """Exchange an authorization code at the token endpoint.

        Args:
            code: Code returned by the provider on the callback.
            callback_origin: Origin used when the authorization URL was built;
                the provider requires the same redirect URI again.

        Returns:
            ExchangeResult with the token on success, or a classified failure.
        """
        try:
            async with AsyncOAuth2Client(
                client_id=self._options.client_id,
                client_secret=self._options.client_secret,
                redirect_uri=self.redirect_uri(callback_origin),
                timeout=self._options.timeout,
            ) as client:
                token = await client.fetch_token(
                    self._options.token_endpoint,
                    grant_type="authorization_code",
                    code=code,
                )
        except OAuthError as e:
            logger.warning(
                "Token endpoint rejected authorization code",
                error=e.error,
                description=e.description,
            )
            return ExchangeResult.failed(ExchangeFailureKind.INVALID_GRANT, e.error or "invalid_grant")
        except httpx.TransportError as e:
            logger.warning(
                "Token endpoint unreachable",
                error=str(e),
                error_type=type(e).__name__,
            )
            return ExchangeResult.failed(
                ExchangeFailureKind.TRANSPORT_FAILURE,
                "Failed to send request to the token endpoint",
            )
        except Exception as e:
            logger.error(
                "Token exchange failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            return ExchangeResult.failed(ExchangeFailureKind.UNEXPECTED, type(e).__name__)

        return ExchangeResult(token=dict(token))
