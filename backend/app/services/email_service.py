"""Transactional email for account verification and password reset."""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from app.config import settings

logger = logging.getLogger(__name__)


def redact_email(email: str) -> str:
    """Redact an address for logging."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class EmailService:
    """SMTP sender; logs a preview instead of sending when SMTP is unset."""

    def __init__(
        self,
        *,
        smtp_host: Optional[str] = None,
        smtp_port: int = 587,
        smtp_user: Optional[str] = None,
        smtp_password: Optional[str] = None,
        smtp_use_tls: bool = True,
        from_email: Optional[str] = None,
        from_name: str = "Learning Platform",
        frontend_url: str = "http://localhost:5000",
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.from_email = from_email or smtp_user
        self.from_name = from_name
        self.frontend_url = frontend_url.rstrip("/")

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    def _send_email(self, to_email: str, subject: str, html_body: str, text_body: str) -> bool:
        """
        Send an email via SMTP

        Returns:
            bool: True if sent (or logged in dev mode), False on any failure
        """
        if not self.is_configured:
            logger.info(
                "Email not sent (SMTP not configured): to=%s subject=%s",
                redact_email(to_email),
                subject,
            )
            return True

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = to_email
        msg.attach(MIMEText(text_body, "plain"))
        msg.attach(MIMEText(html_body, "html"))

        context = ssl.create_default_context()
        try:
            if self.smtp_use_tls:
                with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=30) as server:
                    server.starttls(context=context)
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, to_email, msg.as_string())
            else:
                with smtplib.SMTP_SSL(self.smtp_host, self.smtp_port, context=context, timeout=30) as server:
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, to_email, msg.as_string())
        except smtplib.SMTPException as exc:
            logger.error(
                "SMTP error sending to %s: %s: %s",
                redact_email(to_email),
                type(exc).__name__,
                exc,
            )
            return False
        except OSError as exc:
            # Connection refused, TLS failures and timeouts
            logger.error(
                "Could not reach SMTP server %s:%s for %s: %s",
                self.smtp_host,
                self.smtp_port,
                redact_email(to_email),
                exc,
            )
            return False

        logger.info("Email sent: to=%s subject=%s", redact_email(to_email), subject)
        return True

    def send_verification_email(self, to_email: str, name: str, token: str) -> bool:
        verify_url = f"{self.frontend_url}/verify-email?token={token}"
        hours = settings.EMAIL_VERIFICATION_EXPIRE_HOURS
        subject = f"Verify your email - {self.from_name}"
        text_body = (
            f"Hi {name or 'there'},\n\n"
            f"Please verify your email address by visiting the link below:\n\n"
            f"{verify_url}\n\n"
            f"This link will expire in {hours} hours. "
            f"If you didn't create an account, you can ignore this email.\n"
        )
        html_body = (
            f"<p>Hi {name or 'there'},</p>"
            f"<p>Please verify your email address:</p>"
            f'<p><a href="{verify_url}">Verify my email</a></p>'
            f"<p>This link will expire in {hours} hours.</p>"
        )
        return self._send_email(to_email, subject, html_body, text_body)

    def send_password_reset_email(self, to_email: str, name: str, token: str) -> bool:
        reset_url = f"{self.frontend_url}/reset-password?token={token}"
        minutes = settings.PASSWORD_RESET_EXPIRE_MINUTES
        subject = f"Reset your password - {self.from_name}"
        text_body = (
            f"Hi {name or 'there'},\n\n"
            f"We received a request to reset your password. Choose a new one here:\n\n"
            f"{reset_url}\n\n"
            f"This link will expire in {minutes} minutes. "
            f"If you didn't request this, you can safely ignore this email.\n"
        )
        html_body = (
            f"<p>Hi {name or 'there'},</p>"
            f"<p>We received a request to reset your password.</p>"
            f'<p><a href="{reset_url}">Reset my password</a></p>'
            f"<p>This link will expire in {minutes} minutes.</p>"
        )
        return self._send_email(to_email, subject, html_body, text_body)


email_service = EmailService(
    smtp_host=settings.SMTP_HOST or None,
    smtp_port=settings.SMTP_PORT,
    smtp_user=settings.SMTP_USER or None,
    smtp_password=settings.SMTP_PASSWORD or None,
    smtp_use_tls=settings.SMTP_USE_TLS,
    from_email=settings.SMTP_FROM or None,
    from_name=settings.SMTP_FROM_NAME,
    frontend_url=settings.FRONTEND_URL,
)
