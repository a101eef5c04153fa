"""Magic link and welcome emails over SMTP.

smtplib blocks, so sends run in a worker thread.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from typing import Any

from runchecks.common.errors import EmailDeliveryError

logger = logging.getLogger(__name__)

APP_TITLE = "Bear Valley Run Checks"


class EmailSender:
    def __init__(
        self,
        *,
        host: str,
        port: int,
        user: str,
        password: str,
        sender: str,
        app_url: str,
        timeout_seconds: int = 10,
    ) -> None:
        self._host = host
        self._port = port
        self._user = user
        self._password = password
        self._sender = sender
        self._app_url = app_url.rstrip("/")
        self._timeout_seconds = timeout_seconds

    @classmethod
    def from_config(cls, config: Any) -> "EmailSender":
        return cls(
            host=config.SMTP_HOST,
            port=config.SMTP_PORT,
            user=config.SMTP_USER,
            password=config.SMTP_PASS,
            sender=config.EMAIL_FROM,
            app_url=config.APP_URL,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self._host and self._sender)

    def login_url(self, token: str) -> str:
        return f"{self._app_url}/auth/verify?token={token}"

    def _send_sync(self, msg: EmailMessage) -> None:
        # Port 465 is implicit TLS; anything else upgrades with STARTTLS.
        if self._port == 465:
            smtp: smtplib.SMTP = smtplib.SMTP_SSL(self._host, self._port, timeout=self._timeout_seconds)
        else:
            smtp = smtplib.SMTP(self._host, self._port, timeout=self._timeout_seconds)
        with smtp:
            if self._port != 465:
                smtp.starttls()
            if self._user:
                smtp.login(self._user, self._password)
            smtp.send_message(msg)

    async def _send(self, *, to_email: str, subject: str, text: str, html: str) -> None:
        if not self.is_configured:
            raise EmailDeliveryError("SMTP not configured")

        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self._sender
        msg["To"] = to_email
        msg.set_content(text)
        msg.add_alternative(html, subtype="html")

        try:
            await asyncio.to_thread(self._send_sync, msg)
        except Exception as e:
            logger.error("Failed to send '%s' email to %s: %s", subject, to_email, e)
            raise EmailDeliveryError(str(e)[:400]) from e
        logger.info("Sent '%s' email to %s", subject, to_email)

    async def send_magic_link(self, to_email: str, token: str) -> None:
        link = self.login_url(token)
        await self._send(
            to_email=to_email,
            subject=f"Login to {APP_TITLE}",
            text=(
                f"Open this link to log in. It expires in 15 minutes.\n\n{link}\n\n"
                "If you didn't request this email, you can safely ignore it."
            ),
            html=(
                f"<h2>Login to {APP_TITLE}</h2>"
                "<p>Click the link below to log in. This link will expire in 15 minutes.</p>"
                f'<p><a href="{link}">Login Now</a></p>'
                "<p>If you didn't request this email, you can safely ignore it.</p>"
                f'<p style="color: #666; font-size: 12px;">Or copy this link: {link}</p>'
            ),
        )

    async def send_welcome_email(self, to_email: str, token: str) -> None:
        link = self.login_url(token)
        await self._send(
            to_email=to_email,
            subject=f"Welcome to {APP_TITLE}",
            text=(
                "An admin has created an account for you. Open this link to log in "
                f"for the first time (expires in 15 minutes):\n\n{link}"
            ),
            html=(
                f"<h2>Welcome to {APP_TITLE}!</h2>"
                "<p>An admin has created an account for you. Click the link below to log in for the first time.</p>"
                f'<p><a href="{link}">Login Now</a></p>'
                "<p>This link will expire in 15 minutes. You can request a new login link anytime from the login page.</p>"
                f'<p style="color: #666; font-size: 12px;">Or copy this link: {link}</p>'
            ),
        )
