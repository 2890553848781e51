"""Shared fixtures for forward-auth tests."""

from __future__ import annotations

import pytest
import pytest_asyncio
from aiohttp import DummyCookieJar
from aiohttp.test_utils import TestClient, TestServer
from helpers import CLIENT_ID, CLIENT_SECRET, IDP_STATE, FakeUpstream, create_idp_app

from forwardauth.security.oauth.authenticator import ForwardAuthenticator
from forwardauth.security.oauth.config import ForwardAuthOptions, OIDCOptions
from forwardauth.security.oauth.exchange import OIDCExchange
from forwardauth.security.oauth.session import SessionStore
from forwardauth.server.app import create_app


@pytest_asyncio.fixture
async def idp_server():
    """Mock OIDC provider on a random local port."""
    server = TestServer(create_idp_app())
    await server.start_server()
    yield server
    await server.close()


@pytest.fixture
def idp_state(idp_server):
    return idp_server.app[IDP_STATE]


@pytest.fixture
def oidc_options(idp_server) -> OIDCOptions:
    return OIDCOptions(
        client_id=CLIENT_ID,
        client_secret=CLIENT_SECRET,
        authorization_endpoint=str(idp_server.make_url("/authorize")),
        token_endpoint=str(idp_server.make_url("/token")),
        scopes=["openid", "profile"],
    )


@pytest.fixture
def store():
    store = SessionStore()
    yield store
    store.close()


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def options() -> ForwardAuthOptions:
    return ForwardAuthOptions(secure=False)


@pytest.fixture
def authenticator(options, oidc_options, store, upstream) -> ForwardAuthenticator:
    return ForwardAuthenticator(
        options=options,
        exchange=OIDCExchange(oidc_options, callback_path=options.callback_path),
        store=store,
        get_host_config=upstream.get_host_config,
    )


@pytest_asyncio.fixture
async def client(authenticator):
    """Test client for the forward-auth app; cookies are sent explicitly."""
    client = TestClient(TestServer(create_app(authenticator)), cookie_jar=DummyCookieJar())
    await client.start_server()
    yield client
    await client.close()
