"""Tests for the server lifecycle and logging setup."""

from __future__ import annotations

import json

import httpx
import pytest
import structlog
from aiohttp.test_utils import unused_port
from helpers import CLIENT_ID, CLIENT_SECRET, forwarded_headers

from forwardauth.core.config import ForwardAuthConfig
from forwardauth.core.logging import setup_logging
from forwardauth.server.app import ForwardAuthServer


@pytest.fixture
def server_config(idp_server) -> ForwardAuthConfig:
    return ForwardAuthConfig(
        _env_file=None,
        client_id=CLIENT_ID,
        client_secret=CLIENT_SECRET,
        oidc_issuer_config_url=str(idp_server.make_url("/.well-known/openid-configuration")),
        bind=f"127.0.0.1:{unused_port()}",
        unsafe_cookie_insecure=True,
    )


class TestForwardAuthServer:
    """Tests for ForwardAuthServer."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, server_config):
        """Test the server answers health checks and forward-auth requests."""
        server = ForwardAuthServer(server_config)
        await server.start()
        try:
            base = f"http://{server_config.bind}"
            async with httpx.AsyncClient() as client:
                health = await client.get(f"{base}/healthz")
                assert health.status_code == 200
                assert health.text == "OK"

                response = await client.get(
                    f"{base}/oauth2/traefik",
                    headers=forwarded_headers("https://app.test/"),
                )
                assert response.status_code == 302
                assert response.headers["location"].startswith(
                    server_config.oidc_issuer_config_url.split("/.well-known")[0]
                )
        finally:
            await server.stop()

        assert server.authenticator is None

    @pytest.mark.asyncio
    async def test_stop_without_start(self, server_config):
        """Test stopping a server that never started is harmless."""
        await ForwardAuthServer(server_config).stop()

    def test_parse_bind(self, server_config):
        server = ForwardAuthServer(server_config)
        assert server._parse_bind("127.0.0.1:8080") == ("127.0.0.1", 8080)
        assert server._parse_bind("9000") == ("0.0.0.0", 9000)


class TestSetupLogging:
    """Tests for structlog configuration."""

    def teardown_method(self):
        structlog.reset_defaults()

    def test_json_logs(self, capsys):
        """Test JSON mode emits one object per event with level and timestamp."""
        setup_logging("info", json_logs=True)
        structlog.get_logger().info("Session created", host="app.test")

        line = capsys.readouterr().out.strip().splitlines()[-1]
        event = json.loads(line)
        assert event["event"] == "Session created"
        assert event["host"] == "app.test"
        assert event["level"] == "info"
        assert "timestamp" in event

    def test_level_filtering(self, capsys):
        """Test events below the configured level are dropped."""
        setup_logging("warning", json_logs=True)
        logger = structlog.get_logger()
        logger.info("hidden")
        logger.warning("shown")

        output = capsys.readouterr().out
        assert "hidden" not in output
        assert "shown" in output
