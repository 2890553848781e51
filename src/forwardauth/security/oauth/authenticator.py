"""Forward-auth authenticator.

The reverse proxy calls the forward-auth endpoint for every inbound request
and describes the original request with ``X-Forwarded-*`` headers. This
module decides, per request, whether to:
- Redirect the browser to the OIDC provider
- Complete the provider callback and log into the upstream application
- Revalidate an existing session against the upstream application
- Log the user out

Security features:
- Session tokens are stored hashed; the browser holds the only raw copy
- Single-use state cookie checked against the callback's state parameter
- ``__Host-`` prefixed, Secure, HttpOnly, SameSite=Strict cookies
- Error responses never include tokens, codes, or cookie values
"""

from __future__ import annotations

import asyncio
import secrets
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from urllib.parse import parse_qsl, urlsplit

import structlog
from aiohttp import hdrs, web

from forwardauth.core.config import ForwardAuthConfig
from forwardauth.security.oauth.config import ForwardAuthOptions
from forwardauth.security.oauth.exchange import (
    ExchangeFailureKind,
    ExchangeResult,
    OIDCExchange,
)
from forwardauth.security.oauth.providers import discover_oidc_options
from forwardauth.security.oauth.session import SessionStore
from forwardauth.security.tokens import encode_session_token, generate_session_token
from forwardauth.upstream.cookies import (
    build_cookie_header,
    deserialize_cookies,
    parse_set_cookie_headers,
    serialize_cookies,
    session_max_age,
)
from forwardauth.upstream.hosts import (
    DirectoryHostConfigLoader,
    HostConfig,
    HostConfigResolver,
)

logger = structlog.get_logger()

FORWARDED_HEADERS = (
    "X-Forwarded-Proto",
    "X-Forwarded-Host",
    "X-Forwarded-Port",
    "X-Forwarded-Uri",
)
DEFAULT_PORTS = {"http": 80, "https": 443}
EXPIRED_COOKIE_DATE = "Thu, 01 Jan 1970 00:00:00 GMT"

INVALID_REQUEST_MESSAGE = "Invalid forward-auth request"
INVALID_STATE_MESSAGE = "Invalid state or missing code. Please try again."
UNEXPECTED_ERROR_MESSAGE = "An unexpected error occurred. Please try again."

HostConfigGetter = Callable[[str], Awaitable[HostConfig]]


@dataclass
class ForwardedRequest:
    """The original request, rebuilt from the proxy's forwarded headers."""

    proto: str
    host: str
    port: int
    path: str
    query: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> ForwardedRequest | None:
        """Rebuild the original request.

        Returns None when any forwarded header is missing or unusable.
        """
        values = [headers.get(name, "").strip() for name in FORWARDED_HEADERS]
        if not all(values):
            return None
        proto, host, port, uri = values

        proto = proto.lower()
        if not proto.isalpha() or any(c in host for c in "/?#@ "):
            return None
        # Some proxies forward "host:port" or "[v6]:port"; the port header is authoritative
        name, sep, host_port = host.rpartition(":")
        if sep and host_port.isdigit() and (name.endswith("]") or ":" not in name):
            host = name
        try:
            port_number = int(port)
        except ValueError:
            return None
        if not 0 < port_number < 65536:
            return None

        if not uri.startswith("/"):
            uri = f"/{uri}"
        parts = urlsplit(uri)
        # First occurrence wins for repeated parameters
        query: dict[str, str] = {}
        for key, value in parse_qsl(parts.query):
            query.setdefault(key, value)
        return cls(
            proto=proto,
            host=host.lower(),
            port=port_number,
            path=parts.path or "/",
            query=query,
        )

    @property
    def authority(self) -> str:
        """Host, with the port only when it is not the scheme default."""
        if DEFAULT_PORTS.get(self.proto) == self.port:
            return self.host
        return f"{self.host}:{self.port}"

    @property
    def origin(self) -> str:
        return f"{self.proto}://{self.authority}"


def _text(text: str, status: int) -> web.Response:
    return web.Response(text=text, status=status, content_type="text/plain")


def _redirect(location: str) -> web.Response:
    return web.Response(status=302, headers={hdrs.LOCATION: location})


class ForwardAuthenticator:
    """Forward-auth state machine.

    Handles the OIDC authorization-code flow and keeps a local session per
    browser that wraps the upstream application's own cookies:
    1. No session cookie: redirect to the provider with a fresh state cookie
    2. Callback: check state, exchange the code, log into the upstream, and
       store its cookies in a new session
    3. Session cookie: renew the session and ask the upstream whether its
       cookies are still valid; approve and forward them, or start over
    4. Logout: drop the session and ask the browser to clear cookies
    """

    def __init__(
        self,
        options: ForwardAuthOptions,
        exchange: OIDCExchange,
        store: SessionStore,
        get_host_config: HostConfigGetter,
    ):
        """Initialize the authenticator.

        Args:
            options: Paths and cookie settings
            exchange: OIDC authorization-code adapter
            store: Session store
            get_host_config: Resolves a forwarded host to its upstream capabilities
        """
        self._options = options
        self._exchange = exchange
        self._store = store
        self._get_host_config = get_host_config

    @property
    def options(self) -> ForwardAuthOptions:
        return self._options

    @property
    def store(self) -> SessionStore:
        return self._store

    async def handle(self, request: web.Request) -> web.Response:
        """Answer one forward-auth request from the reverse proxy.

        Args:
            request: The proxy's request carrying X-Forwarded-* headers

        Returns:
            200 to let the original request through, anything else to block it
        """
        forwarded = ForwardedRequest.from_headers(request.headers)
        if forwarded is None:
            logger.warning("Forward-auth request without forwarded headers")
            return _text(INVALID_REQUEST_MESSAGE, 400)

        if forwarded.path == self._options.callback_path:
            return await self.handle_callback(request, forwarded)
        if forwarded.path == self._options.logout_path:
            return await self.handle_logout(request, forwarded)

        token = request.cookies.get(self._options.session_cookie_name)
        if not token:
            return self.redirect_to_auth(forwarded)
        return await self.revalidate(token, forwarded)

    def redirect_to_auth(self, forwarded: ForwardedRequest) -> web.Response:
        """Send the browser to the provider's authorization endpoint."""
        auth = self._exchange.build_authorization_request(forwarded.origin)
        response = _redirect(auth.url)
        self._set_cookie(
            response,
            self._options.state_cookie_name,
            auth.state,
            max_age=self._options.state_max_age,
        )
        logger.debug("Redirecting to OIDC provider", host=forwarded.authority)
        return response

    async def handle_callback(
        self,
        request: web.Request,
        forwarded: ForwardedRequest,
    ) -> web.Response:
        """Complete the provider callback.

        The state cookie is single use: it is deleted on every outcome.
        """
        stored_state = request.cookies.get(self._options.state_cookie_name)
        try:
            response = await self._complete_login(forwarded, stored_state)
        except Exception:
            logger.exception("OIDC callback failed", host=forwarded.authority)
            response = _text("Internal Server Error", 500)
        self._delete_cookie(response, self._options.state_cookie_name)
        return response

    async def _complete_login(
        self,
        forwarded: ForwardedRequest,
        stored_state: str | None,
    ) -> web.Response:
        code = forwarded.query.get("code")
        state = forwarded.query.get("state")
        if (
            not code
            or not state
            or not stored_state
            or not secrets.compare_digest(state.encode(), stored_state.encode())
        ):
            logger.warning(
                "Invalid OIDC callback",
                host=forwarded.authority,
                has_code=bool(code),
                has_state_cookie=bool(stored_state),
            )
            return _text(INVALID_STATE_MESSAGE, 400)

        result = await self._exchange.exchange_code(code, forwarded.origin)
        if not result.ok:
            return self._exchange_failure_response(result)

        token = generate_session_token()
        try:
            host_config = await self._get_host_config(forwarded.authority)
            upstream = await host_config.get_upstream_cookies()
        except Exception as e:
            logger.warning(
                "Upstream login failed",
                host=forwarded.authority,
                error=str(e),
                error_type=type(e).__name__,
            )
            return _text(f"Failed to authenticate with upstream service: {e}", 502)

        if not upstream.is_success:
            logger.warning(
                "Upstream login rejected",
                host=forwarded.authority,
                status=upstream.status_code,
            )
            return _text(
                f"Failed to authenticate with upstream service: {upstream.status_code}",
                502,
            )

        cookies = parse_set_cookie_headers(upstream.headers.get_list("set-cookie"))
        max_age = session_max_age(cookies)
        await asyncio.to_thread(
            self._store.create_session,
            token,
            serialize_cookies(cookies),
            max_age,
        )
        logger.info(
            "Session created",
            host=forwarded.authority,
            upstream_cookies=len(cookies),
            max_age=max_age,
        )

        response = _redirect(f"{forwarded.origin}/")
        self._set_cookie(response, self._options.session_cookie_name, token, max_age=max_age)
        return response

    def _exchange_failure_response(self, result: ExchangeResult) -> web.Response:
        if result.failure is ExchangeFailureKind.INVALID_GRANT:
            return _text(f"Error: {result.detail}", 401)
        if result.failure is ExchangeFailureKind.TRANSPORT_FAILURE:
            return _text(f"Error: {result.detail}", 502)
        return _text(UNEXPECTED_ERROR_MESSAGE, 500)

    async def revalidate(self, token: str, forwarded: ForwardedRequest) -> web.Response:
        """Check an existing session against the store and the upstream."""
        session = await asyncio.to_thread(self._store.validate_session_token, token)
        if session is None:
            logger.debug("Session missing or expired", host=forwarded.authority)
            return self._restart_login(forwarded)

        cookie_header = build_cookie_header(deserialize_cookies(session.upstream_cookies))
        try:
            host_config = await self._get_host_config(forwarded.authority)
            valid = await host_config.validate_upstream_session({"Cookie": cookie_header})
        except Exception as e:
            logger.warning(
                "Upstream validation failed",
                host=forwarded.authority,
                error=str(e),
                error_type=type(e).__name__,
            )
            return _text(f"Failed to validate upstream session: {e}", 502)

        if not valid:
            await asyncio.to_thread(self._store.invalidate_session, session.id)
            logger.info("Upstream session no longer valid", host=forwarded.authority)
            return self._restart_login(forwarded)

        return web.Response(
            text="OK",
            content_type="text/plain",
            headers={"Cookie": cookie_header},
        )

    def _restart_login(self, forwarded: ForwardedRequest) -> web.Response:
        response = self.redirect_to_auth(forwarded)
        self._delete_cookie(response, self._options.session_cookie_name)
        return response

    async def handle_logout(
        self,
        request: web.Request,
        forwarded: ForwardedRequest,
    ) -> web.Response:
        """Drop the session and tell the browser to clear its cookies.

        Forward-auth has no status for "session ended", so 401 blocks the
        request while still showing a message.
        """
        token = request.cookies.get(self._options.session_cookie_name)
        if token:
            await asyncio.to_thread(self._store.invalidate_session, encode_session_token(token))
            logger.info("User logged out", host=forwarded.authority)

        response = _text(
            f"Logged out successfully. Go to {forwarded.origin} to log in again.",
            401,
        )
        response.headers["Clear-Site-Data"] = '"cookies"'
        self._delete_cookie(response, self._options.session_cookie_name)
        return response

    def _set_cookie(
        self,
        response: web.Response,
        name: str,
        value: str,
        max_age: int,
        expires: str | None = None,
    ) -> None:
        response.set_cookie(
            name,
            value,
            max_age=max_age,
            expires=expires,
            path="/",
            secure=self._options.secure,
            httponly=True,
            samesite="Strict",
        )

    def _delete_cookie(self, response: web.Response, name: str) -> None:
        self._set_cookie(response, name, "", max_age=0, expires=EXPIRED_COOKIE_DATE)


async def create_forward_authenticator(
    config: ForwardAuthConfig,
    store: SessionStore | None = None,
    get_host_config: HostConfigGetter | None = None,
) -> ForwardAuthenticator:
    """Create a ForwardAuthenticator from service settings.

    Fetches the provider's discovery document, opens the session store, and
    sets up host config resolution from the configured directory.

    Args:
        config: Service settings
        store: Session store to use instead of opening ``config.sqlite_path``
        get_host_config: Host resolver to use instead of the config directory

    Returns:
        Ready ForwardAuthenticator
    """
    oidc_options = await discover_oidc_options(
        config.oidc_issuer_config_url,
        client_id=config.client_id,
        client_secret=config.client_secret,
        scopes=config.scopes,
        timeout=config.request_timeout,
    )
    options = ForwardAuthOptions(
        secure=config.cookie_secure,
        forward_auth_path=config.forward_auth_path,
        callback_path=config.callback_path,
        logout_path=config.logout_path,
        health_path=config.health_path,
    )
    if store is None:
        store = SessionStore(config.sqlite_path)
    if get_host_config is None:
        resolver = HostConfigResolver(
            DirectoryHostConfigLoader(config.host_config_dir),
            domain_base=config.domain_base,
        )
        get_host_config = resolver.resolve

    return ForwardAuthenticator(
        options=options,
        exchange=OIDCExchange(oidc_options, callback_path=options.callback_path),
        store=store,
        get_host_config=get_host_config,
    )
