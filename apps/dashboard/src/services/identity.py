from __future__ import annotations

import hashlib
import hmac
import logging
import threading
import time
from dataclasses import dataclass
from typing import Optional
from uuid import uuid4

from auth.jwt import AuthTokenError, SessionClaims, create_access_token, verify_access_token
from config import settings
from services.mailer import AccountMailer, account_mailer

logger = logging.getLogger("solar.dashboard.identity")

MIN_PASSWORD_LENGTH = 8


def _now() -> float:
    return time.time()


@dataclass(slots=True)
class UserAccount:
    id: str
    email: str
    display_name: str
    created_at: float
    updated_at: float
    password_hash: str
    email_verified: bool
    verification_token: str | None
    reset_token: str | None = None
    reset_expires_at: float | None = None


@dataclass(frozen=True, slots=True)
class Session:
    access_token: str
    expires_in: int
    user: UserAccount


class IdentityError(RuntimeError):
    """Base class for identity provider failures."""


class InvalidCredentialsError(IdentityError):
    """Raised when an email/password pair does not match an account."""


def _hash_password(password: str, *, salt: str | None = None) -> str:
    cleaned = password.strip()
    if not cleaned:
        raise IdentityError("Password must not be empty")
    salt_value = salt or uuid4().hex
    digest = hashlib.sha256(f"{salt_value}:{cleaned}".encode("utf-8")).hexdigest()
    return f"{salt_value}${digest}"


def _verify_password(stored_hash: str, password: str) -> bool:
    if not stored_hash or "$" not in stored_hash:
        return False
    salt, existing = stored_hash.split("$", 1)
    candidate = hashlib.sha256(f"{salt}:{password.strip()}".encode("utf-8")).hexdigest()
    return hmac.compare_digest(candidate.encode("ascii"), existing.encode("utf-8"))


def _generate_token() -> str:
    return uuid4().hex


def _tokens_match(expected: str | None, provided: str) -> bool:
    return bool(expected) and hmac.compare_digest(expected.encode("utf-8"), provided.encode("utf-8"))


def _validate_password(password: str) -> str:
    cleaned = password.strip()
    if len(cleaned) < MIN_PASSWORD_LENGTH:
        raise IdentityError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    return cleaned


class IdentityProvider:
    """Local account directory with signed session tokens."""

    def __init__(self, mailer: AccountMailer | None = None) -> None:
        self._mailer = mailer or account_mailer
        self._revoked_lock = threading.Lock()
        self._initialize_state()

    def _initialize_state(self) -> None:
        self._users: dict[str, UserAccount] = {user.id: user for user in _default_users()}
        self._revoked_sessions: dict[str, int] = {}

    def reset(self) -> None:
        self._initialize_state()

    def get_user(self, user_id: str) -> UserAccount | None:
        return self._users.get(user_id)

    def find_by_email(self, email: str) -> UserAccount | None:
        cleaned = email.strip().lower()
        for user in self._users.values():
            if user.email == cleaned:
                return user
        return None

    async def sign_up(self, *, email: str, password: str, display_name: str = "") -> UserAccount | None:
        """Register an unverified account; returns None when the address is taken."""
        cleaned_email = email.strip().lower()
        if not cleaned_email:
            raise IdentityError("Email is required")
        cleaned_password = _validate_password(password)
        if self.find_by_email(cleaned_email) is not None:
            logger.info("Sign-up attempted for an existing address")
            return None
        now = _now()
        user = UserAccount(
            id=f"user-{uuid4().hex[:8]}",
            email=cleaned_email,
            display_name=display_name.strip() or cleaned_email,
            created_at=now,
            updated_at=now,
            password_hash=_hash_password(cleaned_password),
            email_verified=False,
            verification_token=_generate_token(),
        )
        self._users[user.id] = user
        await self._mailer.send("verify", user.email, user.verification_token or "")
        logger.info("Registered account %s (verification pending)", user.id)
        return user

    def verify_email(self, token: str) -> UserAccount:
        provided = token.strip()
        if not provided:
            raise IdentityError("Invalid verification token")
        for user in self._users.values():
            if _tokens_match(user.verification_token, provided):
                user.email_verified = True
                user.verification_token = None
                user.updated_at = _now()
                return user
        raise IdentityError("Invalid verification token")

    def sign_in_with_password(self, *, email: str, password: str) -> Session:
        user = self.find_by_email(email)
        if user is None or not _verify_password(user.password_hash, password):
            raise InvalidCredentialsError("Invalid login credentials")
        if not user.email_verified:
            raise IdentityError("Email not confirmed")
        return self.issue_session(user)

    def issue_session(self, user: UserAccount) -> Session:
        ttl = settings.auth_access_token_ttl_seconds
        return Session(
            access_token=create_access_token(user.id, expires_in_seconds=ttl),
            expires_in=ttl,
            user=user,
        )

    def get_current_user(self, token: str | None) -> UserAccount | None:
        claims = self._claims(token)
        if claims is None:
            return None
        return self._users.get(claims.subject)

    def refresh(self, token: str | None) -> Session | None:
        """Exchange a still-valid session for a fresh one and retire the old id."""
        claims = self._claims(token)
        if claims is None:
            return None
        user = self._users.get(claims.subject)
        if user is None:
            return None
        self._revoke(claims)
        return self.issue_session(user)

    def sign_out(self, token: str | None) -> None:
        claims = self._claims(token)
        if claims is not None:
            self._revoke(claims)

    async def request_password_reset(self, email: str) -> None:
        """Queue a reset link if the account exists; callers never learn which."""
        user = self.find_by_email(email)
        if user is None:
            logger.debug("Password reset requested for unknown address")
            return
        user.reset_token = _generate_token()
        user.reset_expires_at = _now() + settings.password_reset_ttl_seconds
        await self._mailer.send("recovery", user.email, user.reset_token)

    def reset_password(self, *, token: str, new_password: str) -> UserAccount:
        provided = token.strip()
        cleaned_password = _validate_password(new_password)
        now = _now()
        for user in self._users.values():
            if not _tokens_match(user.reset_token, provided):
                continue
            if user.reset_expires_at is None or user.reset_expires_at < now:
                user.reset_token = None
                user.reset_expires_at = None
                break
            user.password_hash = _hash_password(cleaned_password)
            user.reset_token = None
            user.reset_expires_at = None
            # Following a reset link proves ownership of the address.
            user.email_verified = True
            user.verification_token = None
            user.updated_at = now
            return user
        raise IdentityError("Reset link is invalid or has expired")

    def _claims(self, token: str | None) -> Optional[SessionClaims]:
        if not token:
            return None
        try:
            claims = verify_access_token(token)
        except AuthTokenError:
            return None
        with self._revoked_lock:
            self._prune_revoked_locked()
            if claims.session_id in self._revoked_sessions:
                return None
        return claims

    def _revoke(self, claims: SessionClaims) -> None:
        with self._revoked_lock:
            self._revoked_sessions[claims.session_id] = claims.expires_at

    def _prune_revoked_locked(self) -> None:
        now = int(_now())
        expired = [sid for sid, expires_at in self._revoked_sessions.items() if expires_at <= now]
        for sid in expired:
            del self._revoked_sessions[sid]


DEFAULT_USER_ID = "user-demo-operator"
DEV_ADMIN_COOKIE = "dev_admin"
DEV_ADMIN_EMAIL = "admin@local"


def dev_admin_enabled() -> bool:
    return settings.dev_admin_auth and not settings.production


def dev_admin_user() -> UserAccount:
    created = _now()
    return UserAccount(
        id="dev-admin",
        email=DEV_ADMIN_EMAIL,
        display_name="Developer",
        created_at=created,
        updated_at=created,
        password_hash="",
        email_verified=True,
        verification_token=None,
    )


def _default_users() -> list[UserAccount]:
    created = _now()
    return [
        UserAccount(
            id=DEFAULT_USER_ID,
            email=settings.demo_user_email.strip().lower(),
            display_name="Demo Operator",
            created_at=created,
            updated_at=created,
            password_hash=_hash_password(settings.demo_user_password, salt="operator-salt"),
            email_verified=True,
            verification_token=None,
        ),
    ]


identity_provider = IdentityProvider()

__all__ = [
    "DEFAULT_USER_ID",
    "DEV_ADMIN_COOKIE",
    "DEV_ADMIN_EMAIL",
    "IdentityError",
    "IdentityProvider",
    "InvalidCredentialsError",
    "Session",
    "UserAccount",
    "dev_admin_enabled",
    "dev_admin_user",
    "identity_provider",
]
