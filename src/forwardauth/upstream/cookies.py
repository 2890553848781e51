"""Upstream cookie jar.

Cookies issued by the protected application's own login endpoint are kept
inside the forward-auth session and replayed as a ``Cookie`` header on every
request. This module turns ``Set-Cookie`` headers into records, records into
a JSON payload for storage, and records back into a ``Cookie`` header.
"""

from __future__ import annotations

import json
import time
from collections.abc import Iterable
from dataclasses import asdict, dataclass
from email.utils import parsedate_to_datetime
from typing import Any

from forwardauth.security.tokens import SESSION_DURATION


@dataclass
class UpstreamCookie:
    """A cookie returned by an upstream login response."""

    name: str
    value: str
    max_age: int | None = None
    expires: int | None = None  # epoch seconds
    domain: str | None = None
    path: str | None = None
    secure: bool = False
    httponly: bool = False
    samesite: str | None = None

    def effective_max_age(self, now: float | None = None) -> int | None:
        """Seconds this cookie stays valid, or None for a browser-session cookie.

        ``Max-Age`` wins over ``Expires`` as it does in browsers.
        """
        if self.max_age is not None:
            return self.max_age
        if self.expires is not None:
            now = time.time() if now is None else now
            return max(0, int(self.expires - now))
        return None

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None and v is not False}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UpstreamCookie:
        return cls(
            name=data["name"],
            value=data["value"],
            max_age=data.get("max_age"),
            expires=data.get("expires"),
            domain=data.get("domain"),
            path=data.get("path"),
            secure=bool(data.get("secure", False)),
            httponly=bool(data.get("httponly", False)),
            samesite=data.get("samesite"),
        )


def _parse_expires(value: str) -> int | None:
    try:
        return int(parsedate_to_datetime(value).timestamp())
    except (TypeError, ValueError, IndexError, OverflowError):
        return None


def parse_set_cookie(header: str) -> UpstreamCookie | None:
    """Parse a single ``Set-Cookie`` header value.

    The cookie value is kept verbatim so it can be replayed byte for byte.
    Unknown attributes are ignored.

    Args:
        header: Header value, e.g. ``"sid=abc; Max-Age=3600; Path=/; HttpOnly"``.

    Returns:
        The parsed cookie, or None if the header has no ``name=value`` pair.
    """
    pair, *attributes = header.split(";")
    if "=" not in pair:
        return None
    name, value = pair.split("=", 1)
    name = name.strip()
    if not name:
        return None

    cookie = UpstreamCookie(name=name, value=value.strip())
    for attribute in attributes:
        key, _, attr_value = attribute.strip().partition("=")
        key = key.strip().lower()
        attr_value = attr_value.strip()
        if key == "max-age":
            try:
                cookie.max_age = int(attr_value)
            except ValueError:
                continue
        elif key == "expires":
            cookie.expires = _parse_expires(attr_value)
        elif key == "domain":
            cookie.domain = attr_value or None
        elif key == "path":
            cookie.path = attr_value or None
        elif key == "secure":
            cookie.secure = True
        elif key == "httponly":
            cookie.httponly = True
        elif key == "samesite":
            cookie.samesite = attr_value or None
    return cookie


def parse_set_cookie_headers(headers: Iterable[str]) -> list[UpstreamCookie]:
    """Parse every ``Set-Cookie`` header of a response, keeping their order."""
    cookies = []
    for header in headers:
        cookie = parse_set_cookie(header)
        if cookie is not None:
            cookies.append(cookie)
    return cookies


def serialize_cookies(cookies: Iterable[UpstreamCookie]) -> str:
    """Serialize cookies to the JSON payload stored with a session."""
    return json.dumps([cookie.to_dict() for cookie in cookies], separators=(",", ":"))


def deserialize_cookies(payload: str) -> list[UpstreamCookie]:
    """Inverse of :func:`serialize_cookies`."""
    return [UpstreamCookie.from_dict(item) for item in json.loads(payload)]


def build_cookie_header(cookies: Iterable[UpstreamCookie]) -> str:
    """Build a ``Cookie`` request header value (``a=1; b=2``)."""
    return "; ".join(f"{cookie.name}={cookie.value}" for cookie in cookies)


def session_max_age(
    cookies: Iterable[UpstreamCookie],
    cap: int = SESSION_DURATION,
    now: float | None = None,
) -> int:
    """Lifetime of a session wrapping these cookies.

    The session never outlives the shortest-lived upstream cookie, nor the
    cap. Cookies without ``Max-Age`` or ``Expires`` do not shorten it.

    Args:
        cookies: Cookies from the upstream login.
        cap: Upper bound in seconds.
        now: Reference time for ``Expires`` attributes.

    Returns:
        Max-age in seconds, never negative.
    """
    ages = [cap]
    for cookie in cookies:
        age = cookie.effective_max_age(now)
        if age is not None:
            ages.append(age)
    return max(0, min(ages))
