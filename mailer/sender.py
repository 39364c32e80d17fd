"""
mailer/sender.py -- Delivery of the auth emails.

Two transports:
  SMTPTransport -- aiosmtplib; STARTTLS when SMTP_USE_TLS is on, implicit TLS
                   on port 465.
  LogTransport  -- writes the message to the log instead of sending it. Used
                   when SMTP_HOST is empty (local development).

AuthMailer sits above the transport and knows the three messages the auth
flows send. The orchestrator depends on AuthMailer only, so tests replace the
transport, not the mailer.

Transport failures propagate. The caller's request fails with a 500 and the
user can ask for a resend; swallowing the error would report success for a
message that never left.
"""

from __future__ import annotations

import logging
from email.message import EmailMessage
from typing import Protocol

import aiosmtplib

from core.config import Settings
from mailer.templates import render

logger = logging.getLogger("monoauth.mailer")


class Transport(Protocol):
    async def send(self, message: EmailMessage) -> None: ...


class SMTPTransport:
    def __init__(
        self,
        host: str,
        port: int,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        timeout: int = 10,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    async def send(self, message: EmailMessage) -> None:
        implicit_tls = self.port == 465
        await aiosmtplib.send(
            message,
            hostname=self.host,
            port=self.port,
            username=self.username or None,
            password=self.password or None,
            use_tls=implicit_tls,
            start_tls=self.use_tls and not implicit_tls,
            timeout=self.timeout,
        )
        logger.info("Sent '%s' to %s via %s:%d", message["Subject"], message["To"], self.host, self.port)


class LogTransport:
    """Logs outgoing mail. Never use in production: the log then holds live codes."""

    async def send(self, message: EmailMessage) -> None:
        body = message.get_body(preferencelist=("plain",))
        logger.info(
            "Mail (not sent) to=%s subject=%r\n%s",
            message["To"],
            message["Subject"],
            body.get_content() if body is not None else "",
        )


class AuthMailer:
    """Renders and sends the OTP, verify-email and forgot-password messages."""

    def __init__(self, transport: Transport, from_email: str, from_name: str, expire_minutes: int) -> None:
        self.transport = transport
        self.sender = f"{from_name} <{from_email}>"
        self.expire_minutes = expire_minutes

    async def send_otp_email(self, to: str, otp: str) -> None:
        await self._send(
            to,
            "Your OTP Code",
            render("otp.html", otp=otp, expire_minutes=self.expire_minutes),
            f"Your OTP is {otp}. Valid for {self.expire_minutes} minutes.",
        )

    async def send_verify_email(self, to: str, verify_url: str) -> None:
        await self._send(
            to,
            "Verify Your Email",
            render("verify_email.html", url=verify_url),
            f"Verify your email: {verify_url}",
        )

    async def send_forgot_password_email(self, to: str, reset_url: str) -> None:
        await self._send(
            to,
            "Reset Your Password",
            render("forgot_password.html", url=reset_url, expire_minutes=self.expire_minutes),
            f"Reset your password: {reset_url}",
        )

    async def _send(self, to: str, subject: str, html: str, text: str) -> None:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = to
        message["Subject"] = subject
        message.set_content(text)
        message.add_alternative(html, subtype="html")
        await self.transport.send(message)


def build_mailer(settings: Settings) -> AuthMailer:
    """Pick the transport from settings. Empty SMTP_HOST means log-only."""
    if settings.smtp_host:
        transport: Transport = SMTPTransport(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_user,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            timeout=settings.smtp_timeout,
        )
    else:
        logger.warning("SMTP_HOST not set -- emails will be logged, not sent")
        transport = LogTransport()
    return AuthMailer(
        transport,
        from_email=settings.mail_from_email,
        from_name=settings.mail_from_name,
        expire_minutes=settings.verification_expire_minutes,
    )
