"""Signed session tokens (compact HS256 JWTs) for dashboard logins."""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from typing import Any, Mapping
from uuid import uuid4

from config import settings

CLOCK_SKEW_SECONDS = 60
MIN_TTL_SECONDS = 60
REQUIRED_CLAIMS = frozenset({"sub", "iss", "aud", "iat", "exp", "jti"})
_HEADER = {"alg": "HS256", "typ": "JWT"}


class AuthTokenError(RuntimeError):
    """Raised when a session token cannot be validated."""


@dataclass(frozen=True, slots=True)
class SessionClaims:
    subject: str
    session_id: str
    issued_at: int
    expires_at: int

    def to_payload(self) -> dict[str, Any]:
        return {
            "sub": self.subject,
            "iss": settings.auth_jwt_issuer,
            "aud": settings.auth_jwt_audience,
            "iat": self.issued_at,
            "exp": self.expires_at,
            "jti": self.session_id,
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], *, now: int) -> "SessionClaims":
        missing = REQUIRED_CLAIMS - payload.keys()
        if missing:
            raise AuthTokenError(f"Session token missing claims: {', '.join(sorted(missing))}")
        if str(payload["iss"]) != settings.auth_jwt_issuer or str(payload["aud"]) != settings.auth_jwt_audience:
            raise AuthTokenError("Session token was issued for another audience")
        try:
            issued_at = int(payload["iat"])
            expires_at = int(payload["exp"])
        except (TypeError, ValueError) as exc:
            raise AuthTokenError("Session token timestamps are invalid") from exc
        if expires_at <= now:
            raise AuthTokenError("Session token has expired")
        if issued_at > now + CLOCK_SKEW_SECONDS:
            raise AuthTokenError("Session token was issued in the future")
        subject = str(payload["sub"]).strip()
        session_id = str(payload["jti"]).strip()
        if not subject or not session_id:
            raise AuthTokenError("Session token has an empty subject or session id")
        return cls(subject=subject, session_id=session_id, issued_at=issued_at, expires_at=expires_at)


def create_access_token(user_id: str, *, expires_in_seconds: int | None = None) -> str:
    """Sign a new session for ``user_id`` with a fresh session id."""
    subject = user_id.strip()
    if not subject:
        raise AuthTokenError("User id is required for token creation")
    _require_hs256()
    ttl = settings.auth_access_token_ttl_seconds if expires_in_seconds is None else expires_in_seconds
    now = int(time.time())
    claims = SessionClaims(
        subject=subject,
        session_id=uuid4().hex,
        issued_at=now,
        expires_at=now + max(MIN_TTL_SECONDS, int(ttl)),
    )
    signing_input = f"{_encode(_HEADER)}.{_encode(claims.to_payload())}"
    return f"{signing_input}.{_signature(signing_input)}"


def verify_access_token(token: str) -> SessionClaims:
    _require_hs256()
    parts = token.strip().split(".")
    if len(parts) != 3:
        raise AuthTokenError("Malformed session token")
    header_segment, payload_segment, signature = parts
    signing_input = f"{header_segment}.{payload_segment}"
    if not hmac.compare_digest(_signature(signing_input).encode("ascii"), signature.encode("utf-8")):
        raise AuthTokenError("Session token signature mismatch")
    if _decode(header_segment).get("alg") != "HS256":
        raise AuthTokenError("Session token uses an unexpected algorithm")
    return SessionClaims.from_payload(_decode(payload_segment), now=int(time.time()))


def _require_hs256() -> None:
    if settings.auth_jwt_algorithm.upper() != "HS256":
        raise AuthTokenError(f"Unsupported signing algorithm {settings.auth_jwt_algorithm!r}")


def _encode(value: Mapping[str, Any]) -> str:
    raw = json.dumps(value, separators=(",", ":"), sort_keys=True).encode("utf-8")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _decode(segment: str) -> dict[str, Any]:
    try:
        value = json.loads(base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4)))
    except (ValueError, UnicodeDecodeError) as exc:
        raise AuthTokenError("Malformed session token") from exc
    if not isinstance(value, dict):
        raise AuthTokenError("Malformed session token")
    return value


def _signature(signing_input: str) -> str:
    digest = hmac.new(settings.auth_jwt_secret.encode("utf-8"), signing_input.encode("utf-8"), hashlib.sha256)
    return base64.urlsafe_b64encode(digest.digest()).rstrip(b"=").decode("ascii")


__all__ = ["AuthTokenError", "SessionClaims", "create_access_token", "verify_access_token"]
