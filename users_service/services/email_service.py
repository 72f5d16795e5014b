"""
Email service.

Handles sending emails via SMTP using aiosmtplib for async support.
The auth flows only build the verification / reset links and the
message body; transport is delegated to a `Mailer`:

- `SmtpMailer` — real delivery through the configured SMTP server.
- `LogMailer`  — used when EMAIL_HOST is empty (local development);
  writes the message to the log so the link can be copied by hand.

`Mailer.send` reports success as a bool instead of raising, so each
flow decides whether a failed dispatch is fatal.
"""

import logging
from email.message import EmailMessage
from typing import Protocol

import aiosmtplib
from fastapi import Request

from users_service.core.config import Settings

logger = logging.getLogger(__name__)


class Mailer(Protocol):
    async def send(self, to: str, subject: str, html_body: str) -> bool: ...


class SmtpMailer:
    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    async def send(self, to: str, subject: str, html_body: str) -> bool:
        """Send an HTML email via the configured SMTP server."""
        message = EmailMessage()
        message["From"] = self.settings.SENDER_EMAIL
        message["To"] = to
        message["Subject"] = subject
        message.set_content(html_body, subtype="html")

        try:
            await aiosmtplib.send(
                message,
                hostname=self.settings.EMAIL_HOST,
                port=self.settings.EMAIL_PORT,
                username=self.settings.SENDER_EMAIL or None,
                password=self.settings.EMAIL_PASSWORD or None,
                start_tls=self.settings.EMAIL_USE_TLS,
            )
        except (aiosmtplib.SMTPException, OSError):
            logger.exception("Failed to send email to %s", to)
            return False
        logger.info("Email sent to %s", to)
        return True


class LogMailer:
    async def send(self, to: str, subject: str, html_body: str) -> bool:
        logger.info("SMTP not configured — email to %s: %s\n%s", to, subject, html_body)
        return True


def build_mailer(settings: Settings) -> Mailer:
    if settings.EMAIL_HOST:
        return SmtpMailer(settings)
    return LogMailer()


# ── Message builders ─────────────────────────────────────────────────


def _button_email(title: str, intro: str, link: str, label: str, footer: str) -> str:
    return f"""\
    <html>
    <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
        <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
            <h2 style="color: #2c3e50;">{title}</h2>
            <p>{intro}</p>
            <div style="text-align: center; margin: 30px 0;">
                <a href="{link}"
                   style="background-color: #3498db; color: #fff; padding: 12px 30px;
                          text-decoration: none; border-radius: 5px; font-size: 16px;">
                    {label}
                </a>
            </div>
            <p style="color: #7f8c8d; font-size: 13px;">
                If the button doesn't work, copy and paste this link into your browser:<br>
                <a href="{link}">{link}</a>
            </p>
            <p style="color: #7f8c8d; font-size: 13px;">{footer}</p>
        </div>
    </body>
    </html>
    """


async def send_verification_email(
    mailer: Mailer,
    settings: Settings,
    to_email: str,
    username: str,
    token: str,
) -> bool:
    link = f"{settings.FRONTEND_URL}/verify-email?token={token}"
    html_body = _button_email(
        title=f"Welcome, {username}!",
        intro=f"Please confirm your email address to activate your "
              f"<strong>{settings.APP_NAME}</strong> account.",
        link=link,
        label="Verify Email",
        footer="This link will expire in 24 hours.",
    )
    return await mailer.send(to_email, "Verify your email address", html_body)


async def send_password_reset_email(
    mailer: Mailer,
    settings: Settings,
    to_email: str,
    token: str,
) -> bool:
    link = f"{settings.FRONTEND_URL}/reset-password/{token}"
    html_body = _button_email(
        title="Password reset",
        intro="We received a request to reset your password. "
              "If you did not ask for this, you can ignore this email.",
        link=link,
        label="Reset Password",
        footer="This link will expire in 1 hour.",
    )
    return await mailer.send(to_email, "Reset your password", html_body)


def get_mailer(request: Request) -> Mailer:
    """FastAPI dependency — the mailer built by `create_app`."""
    return request.app.state.mailer
