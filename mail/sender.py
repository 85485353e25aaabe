"""
mail/sender.py -- Outbound notification sink.

Two notifications exist: the verification code sent at registration/resend,
and the approval notice sent when an admin activates an account. The flow
controller decides per call whether a failure matters (verification: yes,
surfaced to the caller; approval: no, logged and dropped). Senders here only
report failure by raising NotificationError; they never decide policy.

SmtpNotifier speaks plain SMTP (STARTTLS + login) and renders HTML bodies from
Jinja2 templates in mail/templates/. LogNotifier is the development sink used
when SMTP_HOST is unset: it writes the message to the log instead.

Layer rule: no imports from api/ or auth/.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.message import EmailMessage
from email.utils import formataddr
from pathlib import Path
from typing import Protocol

from jinja2 import Environment, FileSystemLoader, select_autoescape

from core.config import Settings

logger = logging.getLogger("nanoadmin.mail")

_TEMPLATES_DIR = Path(__file__).parent / "templates"


class NotificationError(Exception):
    """Raised when a notification could not be handed to the mail server."""


class Notifier(Protocol):
    def send_verification_code(self, email: str, code: str, app_name: str | None = None) -> None: ...

    def send_approval(self, email: str, name: str) -> None: ...


# ---------------------------------------------------------------------------
# Message content
# ---------------------------------------------------------------------------


class _Renderer:
    """Builds subject, text and HTML for each notification."""

    def __init__(self, settings: Settings) -> None:
        self.app_name = settings.app_name
        self.app_url = settings.app_url
        self.code_minutes = settings.verification_code_expire_minutes
        self._env = Environment(
            loader=FileSystemLoader(str(_TEMPLATES_DIR)),
            autoescape=select_autoescape(["html"]),
        )

    def verification(self, code: str, app_name: str | None) -> tuple[str, str, str]:
        brand = app_name or self.app_name
        subject = f"Verify your email - {brand}"
        text = (
            f"Enter this verification code to complete your registration: {code}\n\n"
            f"This code expires in {self.code_minutes} minutes. "
            "If you didn't request this, please ignore this email."
        )
        html = self._env.get_template("verification.html").render(
            code=code,
            app_name=app_name,
            product=self.app_name,
            minutes=self.code_minutes,
        )
        return subject, text, html

    def approval(self, name: str) -> tuple[str, str, str]:
        subject = f"Your account has been approved - {self.app_name}"
        text = (
            f"Hi {name},\n\n"
            "Your account has been approved by an administrator. "
            f"You can now log in at {self.app_url}"
        )
        html = self._env.get_template("approval.html").render(
            name=name,
            product=self.app_name,
            login_url=self.app_url,
        )
        return subject, text, html


# ---------------------------------------------------------------------------
# Senders
# ---------------------------------------------------------------------------


class SmtpNotifier:
    """Delivers notifications over SMTP.

    Usage:
        notifier = SmtpNotifier(get_settings())
        notifier.send_verification_code("a@x.com", "123456", app_name="Acme")
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._renderer = _Renderer(settings)
        self._sender = settings.smtp_from or settings.smtp_user

    def send_verification_code(self, email: str, code: str, app_name: str | None = None) -> None:
        subject, text, html = self._renderer.verification(code, app_name)
        self._send(email, subject, text, html, display_name=app_name or self._settings.app_name)

    def send_approval(self, email: str, name: str) -> None:
        subject, text, html = self._renderer.approval(name)
        self._send(email, subject, text, html, display_name=self._settings.app_name)

    def _send(self, to: str, subject: str, text: str, html: str, display_name: str) -> None:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = formataddr((display_name, self._sender))
        msg["To"] = to
        msg.set_content(text)
        msg.add_alternative(html, subtype="html")

        s = self._settings
        try:
            with smtplib.SMTP(s.smtp_host, s.smtp_port, timeout=s.smtp_timeout) as server:
                if s.smtp_starttls:
                    server.starttls(context=ssl.create_default_context())
                if s.smtp_user:
                    server.login(s.smtp_user, s.smtp_password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Failed to send '%s' to %s: %s", subject, to, exc)
            raise NotificationError(str(exc)) from exc
        logger.info("Email sent to %s: %s", to, subject)


class LogNotifier:
    """Development sink: logs what would have been sent. Never raises."""

    def __init__(self, settings: Settings) -> None:
        self._renderer = _Renderer(settings)

    def send_verification_code(self, email: str, code: str, app_name: str | None = None) -> None:
        subject, text, _html = self._renderer.verification(code, app_name)
        logger.warning("SMTP not configured - would send '%s' to %s", subject, email)
        logger.info("Email content: %s", text)

    def send_approval(self, email: str, name: str) -> None:
        subject, _text, _html = self._renderer.approval(name)
        logger.warning("SMTP not configured - would send '%s' to %s", subject, email)


def build_notifier(settings: Settings) -> Notifier:
    """Return the SMTP sender when SMTP_HOST is set, else the logging sink."""
    if settings.smtp_configured:
        return SmtpNotifier(settings)
    logger.warning("SMTP_HOST not set -- verification codes will be written to the log")
    return LogNotifier(settings)
