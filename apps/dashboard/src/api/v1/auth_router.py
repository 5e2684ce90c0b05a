from __future__ import annotations

from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, Response, status
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, EmailStr, Field

from config import settings
from services.identity import (
    DEV_ADMIN_COOKIE,
    DEV_ADMIN_EMAIL,
    IdentityError,
    InvalidCredentialsError,
    Session,
    UserAccount,
    dev_admin_enabled,
    identity_provider,
)

from .dependencies import get_current_user, session_token

DEV_ADMIN_MAX_AGE = 60 * 60 * 24
SIGNUP_MESSAGE = "Check your inbox for a link to confirm your address."


class AuthUserModel(BaseModel):
    id: str
    email: str
    display_name: str
    email_verified: bool


class SessionResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: AuthUserModel


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=256)


class SignUpRequest(BaseModel):
    email: EmailStr
    display_name: str = Field(default="", max_length=120)
    password: str = Field(..., min_length=8, max_length=256)
    confirm_password: str = Field(..., min_length=8, max_length=256)


class SignUpResponse(BaseModel):
    ok: bool = True
    verification_pending: bool = True
    email: str
    message: str = SIGNUP_MESSAGE


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=1, max_length=128)
    password: str = Field(..., min_length=8, max_length=256)
    confirm_password: str = Field(..., min_length=8, max_length=256)


class DevLoginRequest(BaseModel):
    email: str = Field(default="", max_length=256)
    password: str = Field(default="", max_length=256)


router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=SessionResponse)
async def login(payload: LoginRequest, response: Response) -> SessionResponse:
    try:
        session = identity_provider.sign_in_with_password(email=str(payload.email), password=payload.password)
    except InvalidCredentialsError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc
    except IdentityError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    _set_session_cookie(response, session)
    return _to_session_response(session)


@router.post("/logout")
async def logout(
    request: Request,
    response: Response,
    authorization: str | None = Header(default=None),
):
    identity_provider.sign_out(session_token(request, authorization))
    _clear_cookie(response, settings.session_cookie_name)
    _clear_cookie(response, DEV_ADMIN_COOKIE)
    return {"ok": True}


@router.post("/signup", response_model=SignUpResponse, status_code=status.HTTP_201_CREATED)
async def signup(payload: SignUpRequest) -> SignUpResponse:
    if payload.password != payload.confirm_password:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Passwords do not match")
    try:
        await identity_provider.sign_up(
            email=str(payload.email),
            password=payload.password,
            display_name=payload.display_name,
        )
    except IdentityError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    # Same answer whether or not the address was already registered.
    return SignUpResponse(email=str(payload.email).strip().lower())


@router.post("/refresh", response_model=SessionResponse)
async def refresh(
    request: Request,
    response: Response,
    authorization: str | None = Header(default=None),
) -> SessionResponse:
    session = identity_provider.refresh(session_token(request, authorization))
    if session is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    _set_session_cookie(response, session)
    return _to_session_response(session)


@router.get("/me", response_model=AuthUserModel)
async def me(current_user: UserAccount = Depends(get_current_user)) -> AuthUserModel:
    return _to_user_model(current_user)


@router.post("/forgot-password", status_code=status.HTTP_202_ACCEPTED)
async def forgot_password(payload: ForgotPasswordRequest):
    await identity_provider.request_password_reset(str(payload.email))
    return {"ok": True, "message": "If an account exists for that address, a reset link has been sent."}


@router.post("/reset-password")
async def reset_password(payload: ResetPasswordRequest):
    if payload.password != payload.confirm_password:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Passwords do not match")
    try:
        identity_provider.reset_password(token=payload.token, new_password=payload.password)
    except IdentityError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return {"ok": True}


@router.get("/callback")
async def auth_callback(
    token_hash: str | None = Query(default=None, max_length=128),
    link_type: str | None = Query(default=None, alias="type", max_length=32),
    next_path: str = Query(default="/dashboard", alias="next", max_length=512),
) -> RedirectResponse:
    """Complete an emailed link: confirm a signup or hand a recovery token to the reset page."""
    if not token_hash or not link_type:
        return _redirect("/login")
    if link_type == "recovery":
        return _redirect("/reset-password", token=token_hash)
    if link_type not in {"signup", "email"}:
        return _redirect("/login", error="auth_verify_failed")
    try:
        identity_provider.verify_email(token_hash)
    except IdentityError:
        return _redirect("/login", error="auth_verify_failed")
    return _redirect(_safe_next(next_path))


@router.post("/dev-login")
async def dev_login(payload: DevLoginRequest, response: Response):
    if not dev_admin_enabled():
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Dev admin login is disabled")
    if payload.email != "admin" or payload.password != "admin":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    response.set_cookie(
        DEV_ADMIN_COOKIE,
        "1",
        max_age=DEV_ADMIN_MAX_AGE,
        path="/",
        httponly=True,
        samesite="lax",
        secure=settings.production,
    )
    return {"ok": True, "email": DEV_ADMIN_EMAIL}


def _to_user_model(user: UserAccount) -> AuthUserModel:
    return AuthUserModel(
        id=user.id,
        email=user.email,
        display_name=user.display_name,
        email_verified=user.email_verified,
    )


def _to_session_response(session: Session) -> SessionResponse:
    return SessionResponse(
        access_token=session.access_token,
        expires_in=session.expires_in,
        user=_to_user_model(session.user),
    )


def _set_session_cookie(response: Response, session: Session) -> None:
    response.set_cookie(
        settings.session_cookie_name,
        session.access_token,
        max_age=session.expires_in,
        path="/",
        httponly=True,
        samesite="lax",
        secure=settings.production,
    )


def _clear_cookie(response: Response, name: str) -> None:
    response.delete_cookie(name, path="/", httponly=True, samesite="lax", secure=settings.production)


def _safe_next(path: str) -> str:
    # Only same-site relative paths; "//host" would leave the site.
    if not path.startswith("/") or path.startswith(("//", "/\\")):
        return "/dashboard"
    return path


def _redirect(path: str, **params: str) -> RedirectResponse:
    url = f"{settings.site_url.rstrip('/')}{path}"
    if params:
        url = f"{url}?{urlencode(params)}"
    return RedirectResponse(url, status_code=status.HTTP_303_SEE_OTHER)


__all__ = ["router"]
