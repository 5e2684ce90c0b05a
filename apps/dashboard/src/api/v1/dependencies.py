from __future__ import annotations

from fastapi import Header, HTTPException, Request, status

from config import settings
from services.identity import (
    DEV_ADMIN_COOKIE,
    UserAccount,
    dev_admin_enabled,
    dev_admin_user,
    identity_provider,
)
from services.rate_limiter import FixedWindowRateLimiter
from services.telemetry import TelemetryService

UNAUTHORIZED = {"error": "Unauthorized"}


def session_token(request: Request, authorization: str | None = None) -> str | None:
    if authorization:
        scheme, _, value = authorization.partition(" ")
        if scheme.lower() == "bearer" and value.strip():
            return value.strip()
    cookie = request.cookies.get(settings.session_cookie_name)
    return cookie.strip() if cookie else None


def get_current_user(
    request: Request,
    authorization: str | None = Header(default=None),
) -> UserAccount:
    user = identity_provider.get_current_user(session_token(request, authorization))
    if user is not None:
        return user
    if dev_admin_enabled() and request.cookies.get(DEV_ADMIN_COOKIE) == "1":
        return dev_admin_user()
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=UNAUTHORIZED)


def get_telemetry_service(request: Request) -> TelemetryService:
    return request.app.state.telemetry_service


def get_rate_limiter(request: Request) -> FixedWindowRateLimiter:
    return request.app.state.rate_limiter
