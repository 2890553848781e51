"""Security module for the forward-auth service.

This module provides:
- Session token generation and one-way encoding
- OIDC authorization-code login and the forward-auth state machine
"""

from forwardauth.security.tokens import encode_session_token, generate_session_token

__all__ = [
    "encode_session_token",
    "generate_session_token",
]
