"""Test doubles: a mock OIDC provider and a fake upstream application."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlencode, urlsplit

import httpx
from aiohttp import web

from forwardauth.upstream.hosts import HostConfig

CLIENT_ID = "test-client-id"
CLIENT_SECRET = "test-client-secret"
VALID_CODE = "test_code"


@dataclass
class IdPState:
    """Mutable behaviour of the mock provider's token endpoint."""

    token_response: tuple[int, Any] | None = None
    token_requests: list[dict[str, str]] = field(default_factory=list)


IDP_STATE = web.AppKey("idp_state", IdPState)


async def _discovery(request: web.Request) -> web.Response:
    base = f"{request.scheme}://{request.host}"
    return web.json_response({
        "issuer": base,
        "authorization_endpoint": f"{base}/authorize",
        "token_endpoint": f"{base}/token",
        "scopes_supported": ["openid", "profile", "email"],
    })


async def _broken_discovery(request: web.Request) -> web.Response:
    return web.json_response({"authorization_endpoint": "https://idp.test/authorize"})


async def _authorize(request: web.Request) -> web.Response:
    redirect_uri = request.query["redirect_uri"]
    query = urlencode({"code": VALID_CODE, "state": request.query["state"]})
    return web.Response(status=302, headers={"Location": f"{redirect_uri}?{query}"})


async def _token(request: web.Request) -> web.Response:
    state = request.app[IDP_STATE]
    form = await request.post()
    state.token_requests.append({k: str(v) for k, v in form.items()})

    if state.token_response is not None:
        status, body = state.token_response
        if isinstance(body, str):
            return web.Response(status=status, text=body, content_type="text/html")
        return web.json_response(body, status=status)

    if form.get("code") != VALID_CODE:
        return web.json_response(
            {"error": "invalid_grant", "error_description": "Unknown code"},
            status=400,
        )
    return web.json_response({
        "access_token": "test-access-token",
        "token_type": "Bearer",
        "expires_in": 3600,
        "id_token": "test-id-token",
    })


def create_idp_app() -> web.Application:
    """Minimal OIDC provider: discovery, authorize redirect, token endpoint."""
    app = web.Application()
    app[IDP_STATE] = IdPState()
    app.router.add_get("/.well-known/openid-configuration", _discovery)
    app.router.add_get("/broken/.well-known/openid-configuration", _broken_discovery)
    app.router.add_get("/authorize", _authorize)
    app.router.add_post("/token", _token)
    return app


class FakeUpstream:
    """Upstream application whose login and validation results tests control."""

    def __init__(self):
        self.login_response = httpx.Response(
            200,
            headers=[("set-cookie", "test-cookie=test-value")],
        )
        self.login_error: Exception | None = None
        self.resolve_error: Exception | None = None
        self.valid = True
        self.resolved_hosts: list[str] = []
        self.validated_headers: list[dict[str, str]] = []

    async def get_upstream_cookies(self) -> httpx.Response:
        if self.login_error is not None:
            raise self.login_error
        return self.login_response

    async def validate_upstream_session(self, headers: Mapping[str, str]) -> bool:
        self.validated_headers.append(dict(headers))
        return self.valid

    async def get_host_config(self, host: str) -> HostConfig:
        self.resolved_hosts.append(host)
        if self.resolve_error is not None:
            raise self.resolve_error
        return HostConfig(
            get_upstream_cookies=self.get_upstream_cookies,
            validate_upstream_session=self.validate_upstream_session,
        )


def forwarded_headers(url: str, cookies: dict[str, str] | None = None) -> dict[str, str]:
    """Headers a reverse proxy sends when forwarding a request for ``url``."""
    parts = urlsplit(url)
    port = parts.port or (443 if parts.scheme == "https" else 80)
    uri = parts.path or "/"
    if parts.query:
        uri = f"{uri}?{parts.query}"
    headers = {
        "X-Forwarded-Proto": parts.scheme,
        "X-Forwarded-Host": parts.hostname or "",
        "X-Forwarded-Port": str(port),
        "X-Forwarded-Uri": uri,
    }
    if cookies:
        headers["Cookie"] = "; ".join(f"{name}={value}" for name, value in cookies.items())
    return headers
