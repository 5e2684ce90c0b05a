"""Session token helpers for the dashboard API."""

from .jwt import AuthTokenError, SessionClaims, create_access_token, verify_access_token

__all__ = [
    "AuthTokenError",
    "SessionClaims",
    "create_access_token",
    "verify_access_token",
]
