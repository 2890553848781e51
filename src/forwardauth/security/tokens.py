"""Session token generation and encoding.

Raw session tokens only ever live in the browser cookie. The store keys
sessions by the SHA-256 of the token, so a leaked database does not hand
out usable cookies.
"""

from __future__ import annotations

import base64
import hashlib
import secrets

DAY = 24 * 60 * 60
SESSION_DURATION = 30 * DAY
RENEWAL_WINDOW = 15 * DAY

# 20 random bytes -> 32 base32 characters, no padding
SESSION_TOKEN_BYTES = 20


def generate_session_token() -> str:
    """Generate a new opaque session token.

    Returns:
        Lowercase base32 string of 160 random bits.
    """
    raw = secrets.token_bytes(SESSION_TOKEN_BYTES)
    return base64.b32encode(raw).decode("ascii").lower()


def encode_session_token(token: str) -> str:
    """Derive the stored session id from a raw token.

    Args:
        token: Raw session token from the cookie.

    Returns:
        SHA-256 digest (hex) used as the session id.
    """
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
