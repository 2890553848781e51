"""aiohttp application and server lifecycle for the forward-auth endpoint."""

from __future__ import annotations

import structlog
from aiohttp import web

from forwardauth.core.config import ForwardAuthConfig
from forwardauth.security.oauth.authenticator import (
    ForwardAuthenticator,
    create_forward_authenticator,
)

logger = structlog.get_logger()


@web.middleware
async def error_middleware(request: web.Request, handler) -> web.StreamResponse:
    """Turn unhandled exceptions into a plain 500 without leaking details."""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except Exception:
        logger.exception("Unhandled error", path=request.path, method=request.method)
        return web.Response(text="Internal Server Error", status=500, content_type="text/plain")


async def _handle_health_check(request: web.Request) -> web.Response:
    """Health check endpoint. Always OK, no side effects."""
    return web.Response(text="OK", content_type="text/plain")


def create_app(authenticator: ForwardAuthenticator) -> web.Application:
    """Build the aiohttp application.

    Args:
        authenticator: Handles the forward-auth endpoint

    Returns:
        Application with the health and forward-auth routes
    """
    options = authenticator.options
    app = web.Application(middlewares=[error_middleware])
    app.router.add_get(options.health_path, _handle_health_check)
    app.router.add_route("*", options.forward_auth_path, authenticator.handle)
    return app


class ForwardAuthServer:
    """Runs the forward-auth application on a TCP site."""

    def __init__(self, config: ForwardAuthConfig):
        self.config = config
        self._authenticator: ForwardAuthenticator | None = None
        self._runner: web.AppRunner | None = None

    @property
    def authenticator(self) -> ForwardAuthenticator | None:
        return self._authenticator

    async def start(self) -> None:
        """Discover the provider, open the store, and start listening."""
        self._authenticator = await create_forward_authenticator(self.config)
        app = create_app(self._authenticator)

        self._runner = web.AppRunner(app, access_log=None)
        await self._runner.setup()

        host, port = self._parse_bind(self.config.bind)
        site = web.TCPSite(self._runner, host, port)
        await site.start()
        logger.info(
            "Forward-auth server started",
            host=host,
            port=port,
            forward_auth_path=self.config.forward_auth_path,
            secure_cookies=self.config.cookie_secure,
        )

    async def stop(self) -> None:
        """Stop the server gracefully."""
        logger.info("Stopping forward-auth server...")
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
        if self._authenticator:
            self._authenticator.store.close()
            self._authenticator = None
        logger.info("Forward-auth server stopped")

    def _parse_bind(self, bind: str) -> tuple[str, int]:
        """Parse bind address into host and port."""
        if ":" in bind:
            host, port = bind.rsplit(":", 1)
            return host, int(port)
        return "0.0.0.0", int(bind)
