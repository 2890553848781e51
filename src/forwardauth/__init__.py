"""OIDC forward-auth service for cookie-session upstream applications."""

__version__ = "0.1.0"
