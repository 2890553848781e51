"""Host config for a whoami test app with a form login.

Copy to the host config directory as ``{short host name}.py``.
"""

from collections.abc import Mapping

import httpx

from forwardauth.upstream.hosts import HostConfig

UPSTREAM = "http://whoami:80"


async def get_upstream_cookies() -> httpx.Response:
    async with httpx.AsyncClient(timeout=10.0) as client:
        return await client.post(
            f"{UPSTREAM}/auth/signin",
            data={"username": "admin", "password": "admin"},
        )


async def validate_upstream_session(headers: Mapping[str, str]) -> bool:
    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            response = await client.get(f"{UPSTREAM}/me", headers=dict(headers))
    except httpx.HTTPError:
        return False
    return response.is_success


config = HostConfig(
    get_upstream_cookies=get_upstream_cookies,
    validate_upstream_session=validate_upstream_session,
)
