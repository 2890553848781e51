"""Per-host upstream login and validation.

Each protected host supplies two capabilities: logging into the upstream
application to obtain its cookies, and checking that a set of those cookies
is still accepted. They are bundled in a HostConfig and looked up by host.

Host configs live in a directory, one file per host short name:

- ``{name}.py`` exposing a module-level ``config`` (a HostConfig)
- ``{name}.yaml`` / ``{name}.yml`` / ``{name}.toml`` describing an HttpHostConfig

Example YAML:

    login:
      url: http://whoami:80/auth/signin
      form:
        username: admin
        password: secret
    validate:
      url: http://whoami:80/me
"""

from __future__ import annotations

import asyncio
import importlib.util
import re
import sys
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx
import structlog

from forwardauth.core.config import load_config_from_file

logger = structlog.get_logger()

DEFAULT_CONFIG_DIR = "/var/lib/oidc/config"

# Letters, digits, dots, hyphens, underscores, and an optional port
_HOST_NAME_RE = re.compile(r"^[A-Za-z0-9_-][A-Za-z0-9_.-]*(:[0-9]+)?$")


class HostConfigError(Exception):
    """Raised when the config for a host cannot be loaded."""


@dataclass
class HostConfig:
    """Upstream capabilities for one protected host.

    Attributes:
        get_upstream_cookies: Logs into the upstream application and returns
            its response. ``Set-Cookie`` headers of a 2xx response become the
            session's upstream cookies.
        validate_upstream_session: Receives request headers carrying the
            stored cookies and returns whether the upstream still accepts them.
    """

    get_upstream_cookies: Callable[[], Awaitable[httpx.Response]]
    validate_upstream_session: Callable[[Mapping[str, str]], Awaitable[bool]]


@dataclass
class UpstreamRequest:
    """A declarative HTTP request to an upstream application."""

    url: str
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    form: dict[str, str] | None = None
    json: dict[str, Any] | None = None
    follow_redirects: bool = False

    def __post_init__(self):
        if not self.url.startswith(("http://", "https://")):
            raise ValueError(f"Upstream URL must be http(s): {self.url}")
        if self.form is not None and self.json is not None:
            raise ValueError("Upstream request cannot have both form and json bodies")
        self.method = self.method.upper()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], default_method: str) -> UpstreamRequest:
        if "url" not in data:
            raise ValueError("Upstream request requires a url")
        return cls(
            url=data["url"],
            method=data.get("method", default_method),
            headers=dict(data.get("headers") or {}),
            form=data.get("form"),
            json=data.get("json"),
            follow_redirects=bool(data.get("follow_redirects", False)),
        )


class HttpHostConfig:
    """HostConfig backed by two plain HTTP requests.

    Login posts the configured credentials and hands the raw response back.
    Validation replays the stored cookies and accepts any 2xx answer; network
    errors count as an invalid session.
    """

    def __init__(self, login: UpstreamRequest, validate: UpstreamRequest, timeout: float = 10.0):
        self.login = login
        self.validate = validate
        self.timeout = timeout

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> HttpHostConfig:
        if "login" not in data or "validate" not in data:
            raise ValueError("Host config requires 'login' and 'validate' sections")
        return cls(
            login=UpstreamRequest.from_dict(data["login"], default_method="POST"),
            validate=UpstreamRequest.from_dict(data["validate"], default_method="GET"),
            timeout=float(data.get("timeout", 10.0)),
        )

    async def get_upstream_cookies(self) -> httpx.Response:
        request = self.login
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.request(
                request.method,
                request.url,
                headers=request.headers,
                data=request.form,
                json=request.json,
                follow_redirects=request.follow_redirects,
            )

    async def validate_upstream_session(self, headers: Mapping[str, str]) -> bool:
        request = self.validate
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(
                    request.method,
                    request.url,
                    headers={**request.headers, **headers},
                    follow_redirects=request.follow_redirects,
                )
        except httpx.HTTPError as e:
            logger.warning("Upstream validation request failed", url=request.url, error=str(e))
            return False
        return response.is_success

    def to_host_config(self) -> HostConfig:
        return HostConfig(
            get_upstream_cookies=self.get_upstream_cookies,
            validate_upstream_session=self.validate_upstream_session,
        )


HostConfigLoader = Callable[[str], Awaitable[HostConfig]]


class DirectoryHostConfigLoader:
    """Loads host configs from files named after the host's short name."""

    def __init__(self, config_dir: str | Path = DEFAULT_CONFIG_DIR):
        self.config_dir = Path(config_dir)

    async def __call__(self, name: str) -> HostConfig:
        return await asyncio.to_thread(self.load, name)

    def load(self, name: str) -> HostConfig:
        """Load the host config for a short host name.

        Args:
            name: Host name with the base domain already stripped.

        Returns:
            The loaded HostConfig.

        Raises:
            ValueError: If the name is not a plain host name or the file is invalid.
            FileNotFoundError: If no config file exists for the name.
        """
        if not _HOST_NAME_RE.match(name) or ".." in name:
            raise ValueError(f"Invalid host name: {name!r}")

        module_path = self.config_dir / f"{name}.py"
        if module_path.exists():
            return self._load_module(name, module_path)

        for suffix in (".yaml", ".yml", ".toml"):
            path = self.config_dir / f"{name}{suffix}"
            if path.exists():
                return HttpHostConfig.from_dict(load_config_from_file(path)).to_host_config()

        raise FileNotFoundError(f"No host config found in {self.config_dir} for {name}")

    def _load_module(self, name: str, path: Path) -> HostConfig:
        spec = importlib.util.spec_from_file_location(f"forwardauth_hosts.{name}", path)
        if spec is None or spec.loader is None:
            raise ValueError(f"Cannot import host config module {path}")
        module = importlib.util.module_from_spec(spec)
        sys.modules[spec.name] = module
        try:
            spec.loader.exec_module(module)
        except Exception:
            sys.modules.pop(spec.name, None)
            raise

        config = getattr(module, "config", None)
        if isinstance(config, HttpHostConfig):
            config = config.to_host_config()
        if not isinstance(config, HostConfig):
            raise ValueError(f"{path} must define 'config' as a HostConfig")
        return config


class HostConfigResolver:
    """Maps a forwarded host to its HostConfig, caching per full host.

    The cache is owned by the resolver, so separate resolvers never share
    entries. Failed loads are not cached and not retried.
    """

    def __init__(self, loader: HostConfigLoader, domain_base: str | None = None):
        """Initialize the resolver.

        Args:
            loader: Async callable loading a HostConfig for a short host name.
            domain_base: Suffix such as ``.example.com`` stripped from hosts
                before calling the loader.
        """
        self._loader = loader
        self._domain_base = domain_base
        self._cache: dict[str, HostConfig] = {}

    def short_name(self, host: str) -> str:
        if self._domain_base and host.endswith(self._domain_base):
            return host[: -len(self._domain_base)]
        return host

    async def resolve(self, host: str) -> HostConfig:
        """Get the HostConfig for a host.

        Raises:
            HostConfigError: If the loader fails.
        """
        cached = self._cache.get(host)
        if cached is not None:
            return cached

        name = self.short_name(host)
        try:
            config = await self._loader(name)
        except Exception as e:
            raise HostConfigError(f"Could not load host config for {host}: {e}") from e

        self._cache[host] = config
        logger.info("Host config loaded", host=host, name=name)
        return config

    def clear(self) -> None:
        self._cache.clear()
