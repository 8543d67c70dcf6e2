"""
mailer.py -- Email delivery for notifications.

Delivery is best-effort: send() never raises for transport problems, it logs
and returns False. The in-app notification record is written before any send
is attempted, so a failed email never loses the fact that a notification was
due.
"""

import logging
import smtplib
from email.message import EmailMessage
from typing import Union

from core.config import Settings

logger = logging.getLogger("equipcare.mailer")


class DisabledTransport:
    """Used when SMTP is not configured. Logs and reports nothing sent."""

    def send(self, recipients: list[str], subject: str, body: str) -> bool:
        logger.warning("Email service not configured. Email not sent: %s", subject)
        return False


class SmtpTransport:
    def __init__(
        self,
        host: str,
        port: int = 587,
        user: str = "",
        password: str = "",
        sender: str = "",
        starttls: bool = True,
        timeout: int = 10,
    ) -> None:
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.sender = sender or user
        self.starttls = starttls
        self.timeout = timeout

    def send(self, recipients: list[str], subject: str, body: str) -> bool:
        """Send one message to all recipients. Returns True on success."""
        recipients = [r for r in recipients if r]
        if not recipients:
            return False
        try:
            msg = EmailMessage()
            msg["From"] = self.sender
            msg["To"] = ", ".join(recipients)
            msg["Subject"] = subject
            msg.set_content(body or subject)
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                if self.starttls:
                    smtp.starttls()
                if self.user and self.password:
                    smtp.login(self.user, self.password)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError, ValueError) as e:
            logger.warning("Email delivery failed for %r (%d recipients): %s", subject, len(recipients), e)
            return False
        return True


def build_transport(settings: Settings) -> Union[SmtpTransport, DisabledTransport]:
    """Return the transport configured by settings (DisabledTransport when SMTP_HOST is empty)."""
    if not settings.smtp_host:
        return DisabledTransport()
    return SmtpTransport(
        host=settings.smtp_host,
        port=settings.smtp_port,
        user=settings.smtp_user,
        password=settings.smtp_password,
        sender=settings.smtp_from,
        starttls=settings.smtp_starttls,
        timeout=settings.smtp_timeout_seconds,
    )
