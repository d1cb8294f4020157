from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from typing import Protocol

from .config import SmtpSettings


logger = logging.getLogger(__name__)


class Mailer(Protocol):
    def send(self, to: str, subject: str, text: str) -> None: ...


class LogMailer:
    """Writes outgoing mail to the log instead of delivering it."""

    def send(self, to: str, subject: str, text: str) -> None:
        logger.info("Mail to %s: %s\n%s", to, subject, text)


class SmtpMailer:
    def __init__(self, settings: SmtpSettings) -> None:
        self.settings = settings

    def send(self, to: str, subject: str, text: str) -> None:
        msg = EmailMessage()
        msg["From"] = self.settings.sender or self.settings.user or "deaddrop@localhost"
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(text)
        # Delivery problems are logged; callers never see them.
        try:
            with smtplib.SMTP(self.settings.host, self.settings.port, timeout=30) as smtp:
                smtp.starttls()
                if self.settings.user:
                    smtp.login(self.settings.user, self.settings.password or "")
                smtp.send_message(msg)
        except (OSError, smtplib.SMTPException):
            logger.exception("Error sending email to %s", to)
            return
        logger.info("Email sent to %s", to)


def mailer_from_settings(smtp: SmtpSettings | None) -> Mailer:
    if smtp is None:
        return LogMailer()
    return SmtpMailer(smtp)
