"""Upstream application integration.

Provides the cookie jar used to replay upstream cookies and the per-host
login/validation configs.
"""

from forwardauth.upstream.cookies import (
    UpstreamCookie,
    build_cookie_header,
    deserialize_cookies,
    parse_set_cookie,
    parse_set_cookie_headers,
    serialize_cookies,
    session_max_age,
)
from forwardauth.upstream.hosts import (
    DirectoryHostConfigLoader,
    HostConfig,
    HostConfigError,
    HostConfigResolver,
    HttpHostConfig,
    UpstreamRequest,
)

__all__ = [
    # Cookies
    "UpstreamCookie",
    "build_cookie_header",
    "deserialize_cookies",
    "parse_set_cookie",
    "parse_set_cookie_headers",
    "serialize_cookies",
    "session_max_age",
    # Hosts
    "DirectoryHostConfigLoader",
    "HostConfig",
    "HostConfigError",
    "HostConfigResolver",
    "HttpHostConfig",
    "UpstreamRequest",
]
