"""Forward-auth server - Main entry point."""

import asyncio
import signal

import click
from pydantic import ValidationError
from rich.console import Console

from forwardauth import __version__
from forwardauth.core.config import ForwardAuthConfig
from forwardauth.core.logging import setup_logging
from forwardauth.server.app import ForwardAuthServer

console = Console()

BANNER = """
  ┌─┐┌─┐┬─┐┬ ┬┌─┐┬─┐┌┬┐┌─┐┬ ┬┌┬┐┬ ┬
  ├┤ │ │├┬┘│││├─┤├┬┘ ││├─┤│ │ │ ├─┤
  └  └─┘┴└─└┴┘┴ ┴┴└──┴┘┴ ┴└─┘ ┴ ┴ ┴
        OIDC FORWARD-AUTH
"""


@click.command()
@click.version_option(__version__, prog_name="forwardauth")
@click.option("--bind", help="Listen address (default: 0.0.0.0:3000)")
@click.option("--host-config-dir", help="Directory of per-host config files")
@click.option("--sqlite-path", help="SQLite session database (default: in memory)")
@click.option("--domain-base", help="Base domain stripped from hosts, e.g. .example.com")
@click.option(
    "--log-level",
    type=click.Choice(["debug", "info", "warning", "error", "critical"]),
    help="Log level (default: info)",
)
@click.option("--json-logs", is_flag=True, help="Emit JSON log lines")
@click.option(
    "--insecure-cookies",
    is_flag=True,
    help="Drop Secure and __Host- from cookies (plain HTTP testing only)",
)
@click.option("--quiet", "-q", is_flag=True, help="Do not print the startup banner")
def main(
    bind: str | None,
    host_config_dir: str | None,
    sqlite_path: str | None,
    domain_base: str | None,
    log_level: str | None,
    json_logs: bool,
    insecure_cookies: bool,
    quiet: bool,
):
    """Run the OIDC forward-auth server.

    OIDC settings come from the environment or a .env file: CLIENT_ID,
    CLIENT_SECRET, OIDC_ISSUER_CONFIG_URL. Options override their
    environment counterparts; flags can only switch settings on.
    """
    overrides = {
        "bind": bind,
        "host_config_dir": host_config_dir,
        "sqlite_path": sqlite_path,
        "domain_base": domain_base,
        "log_level": log_level,
        "log_json": json_logs,
        "unsafe_cookie_insecure": insecure_cookies,
    }
    try:
        config = ForwardAuthConfig(**{k: v for k, v in overrides.items() if v})
    except ValidationError as e:
        raise click.ClickException(f"Invalid configuration:\n{e}") from e

    setup_logging(config.log_level, config.log_json)

    if not quiet:
        console.print(BANNER, style="cyan")
        console.print(f"Listening on {config.bind}", style="yellow")
        console.print(f"Forward-auth path: {config.forward_auth_path}", style="dim")
        console.print(f"Host configs: {config.host_config_dir}", style="dim")
        console.print(f"Sessions: {config.sqlite_path or 'in memory'}", style="dim")
    if not config.cookie_secure:
        console.print("Secure cookies disabled (UNSAFE_COOKIE_INSECURE)", style="red")

    asyncio.run(run_server(config, quiet=quiet))


async def run_server(config: ForwardAuthConfig, quiet: bool = False):
    """Run the server until SIGINT or SIGTERM."""
    server = ForwardAuthServer(config)
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    try:
        await server.start()
        if not quiet:
            console.print("Server started, press Ctrl+C to stop", style="green")
        await stop_event.wait()
        if not quiet:
            console.print("\nShutting down...", style="yellow")
    finally:
        await server.stop()


if __name__ == "__main__":
    main()
