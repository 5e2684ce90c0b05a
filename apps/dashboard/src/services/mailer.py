from __future__ import annotations

import asyncio
import logging
import smtplib
from collections import deque
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from email.message import EmailMessage
from typing import Deque, Dict, List, Literal, Optional

import httpx

from config import settings

logger = logging.getLogger("solar.dashboard.mailer")

MailKind = Literal["verify", "recovery"]

_SUBJECTS: Dict[str, str] = {
    "verify": "Confirm your Solar Dashboard account",
    "recovery": "Reset your Solar Dashboard password",
}


@dataclass(slots=True)
class AccountEmail:
    kind: MailKind
    email: str
    link: str
    token: str
    created_at: str

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


@dataclass(slots=True)
class _SmtpConfig:
    host: str
    port: int
    username: str | None
    password: str | None
    use_tls: bool
    email_from: str


class AccountMailer:
    """Delivers verification and password reset links, keeping a short outbox."""

    def __init__(self, *, history_limit: int = 200) -> None:
        self._outbox: Deque[AccountEmail] = deque(maxlen=history_limit)
        self._http_client: httpx.AsyncClient | None = None

    def build_link(self, kind: MailKind, token: str) -> str:
        base = settings.site_url.rstrip("/")
        link_type = "signup" if kind == "verify" else "recovery"
        return f"{base}/api/v1/auth/callback?token_hash={token}&type={link_type}"

    async def send(self, kind: MailKind, email: str, token: str) -> AccountEmail:
        message = AccountEmail(
            kind=kind,
            email=email,
            link=self.build_link(kind, token),
            token=token,
            created_at=datetime.now(timezone.utc).isoformat(timespec="seconds"),
        )
        self._outbox.append(message)
        await self._dispatch(message)
        return message

    def outbox(self, email: Optional[str] = None) -> List[AccountEmail]:
        if email is None:
            return list(self._outbox)
        return [entry for entry in self._outbox if entry.email == email]

    def clear(self) -> None:
        self._outbox.clear()

    async def close(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def _dispatch(self, message: AccountEmail) -> None:
        tasks = []
        if settings.mail_webhook_url:
            tasks.append(self._send_webhook(settings.mail_webhook_url, message))
        smtp = self._smtp_config()
        if smtp is not None:
            tasks.append(self._send_email(smtp, message))
        if not tasks:
            logger.info("No mail transport configured; %s link for %s kept in outbox", message.kind, message.email)
            return
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.warning("Account email delivery failed: %s", result)

    @staticmethod
    def _smtp_config() -> _SmtpConfig | None:
        if not (settings.mail_smtp_host and settings.mail_from):
            return None
        return _SmtpConfig(
            host=settings.mail_smtp_host,
            port=settings.mail_smtp_port,
            username=settings.mail_smtp_username or None,
            password=settings.mail_smtp_password or None,
            use_tls=bool(settings.mail_smtp_tls),
            email_from=settings.mail_from,
        )

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=10.0)
        return self._http_client

    async def _send_webhook(self, url: str, message: AccountEmail) -> None:
        client = await self._get_http_client()
        payload = message.to_dict()
        payload.pop("token", None)
        response = await client.post(url, json=payload)
        response.raise_for_status()

    async def _send_email(self, config: _SmtpConfig, message: AccountEmail) -> None:
        await asyncio.to_thread(self._deliver_email, config, message)

    @staticmethod
    def _deliver_email(config: _SmtpConfig, message: AccountEmail) -> None:
        email = EmailMessage()
        email["Subject"] = _SUBJECTS[message.kind]
        email["From"] = config.email_from
        email["To"] = message.email
        email.set_content(f"Follow this link to continue:\n\n{message.link}\n")

        smtp = smtplib.SMTP(config.host, config.port, timeout=15)
        try:
            if config.use_tls:
                smtp.starttls()
            if config.username:
                smtp.login(config.username, config.password or "")
            smtp.send_message(email)
        finally:
            try:
                smtp.quit()
            except smtplib.SMTPException:  # pragma: no cover - best-effort cleanup
                smtp.close()


account_mailer = AccountMailer()

__all__ = ["AccountEmail", "AccountMailer", "account_mailer"]
