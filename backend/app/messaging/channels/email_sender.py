"""
email_sender.py - Email delivery transport.

Providers:
    • simulation - logs and records every message in an outbox
    • smtp       - smtplib, STARTTLS or implicit SSL per settings

Enabled when EMAIL_ENABLED is set, a from-address is configured and the
provider can actually send (simulation always can; smtp needs SMTP_HOST).
"""

from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formataddr
from typing import List, Optional

from backend.app.core.config import Settings, settings
from backend.app.messaging.channels.base import EmailAttachment, EmailSender

logger = logging.getLogger(__name__)


@dataclass
class SentEmail:
    """Outbox entry kept by the simulation provider."""
    to: str
    subject: str
    body: str
    attachment: Optional[EmailAttachment] = None


class SimulationEmailSender(EmailSender):
    provider = "simulation"

    def __init__(self, enabled: bool = True, from_address: str = "noreply@kidsinmotionpa.org"):
        self._enabled = enabled
        self.from_address = from_address
        self.outbox: List[SentEmail] = []

    def enabled(self) -> bool:
        return self._enabled and bool(self.from_address)

    def send(self, to: str, subject: str, body: str) -> bool:
        return self._record(SentEmail(to=to, subject=subject, body=body))

    def send_with_attachment(
        self,
        to: str,
        subject: str,
        body: str,
        attachment: EmailAttachment,
    ) -> bool:
        return self._record(SentEmail(to=to, subject=subject, body=body, attachment=attachment))

    def _record(self, email: SentEmail) -> bool:
        if not self.enabled():
            logger.debug("[EMAIL] Disabled; skipping message to %s", email.to)
            return False
        if not email.to:
            return False

        logger.info(
            "[EMAIL] %s → %s: Subject='%s'%s",
            self.from_address, email.to, email.subject,
            f" (+{email.attachment.filename})" if email.attachment else "",
            extra={"channel": "email"},
        )
        self.outbox.append(email)
        return True


class SmtpEmailSender(EmailSender):
    """Sends plain-text email through an SMTP relay."""

    provider = "smtp"

    def __init__(self, config: Optional[Settings] = None):
        self._settings = config or settings

    def enabled(self) -> bool:
        s = self._settings
        return bool(s.EMAIL_ENABLED and s.EMAIL_FROM and s.SMTP_HOST)

    def _build_message(
        self,
        to: str,
        subject: str,
        body: str,
        attachment: Optional[EmailAttachment] = None,
    ) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = subject
        if self._settings.EMAIL_FROM_NAME:
            message["From"] = formataddr((self._settings.EMAIL_FROM_NAME, self._settings.EMAIL_FROM))
        else:
            message["From"] = self._settings.EMAIL_FROM
        message["To"] = to
        message.set_content(body)

        if attachment is not None:
            maintype, subtype = attachment.content_type.split("/", 1)
            message.add_attachment(
                attachment.data,
                maintype=maintype,
                subtype=subtype,
                filename=attachment.filename,
            )
        return message

    def _login(self, client: smtplib.SMTP) -> None:
        username = self._settings.SMTP_USER
        password = self._settings.SMTP_PASSWORD
        if username and password:
            client.login(username, password)

    def _deliver(self, message: EmailMessage) -> None:
        s = self._settings
        if s.SMTP_USE_SSL:
            with smtplib.SMTP_SSL(s.SMTP_HOST, s.SMTP_PORT, timeout=s.SMTP_TIMEOUT) as client:
                self._login(client)
                client.send_message(message)
        else:
            with smtplib.SMTP(s.SMTP_HOST, s.SMTP_PORT, timeout=s.SMTP_TIMEOUT) as client:
                if s.SMTP_USE_TLS:
                    client.starttls()
                self._login(client)
                client.send_message(message)

    def send(self, to: str, subject: str, body: str) -> bool:
        return self._send(to, subject, body)

    def send_with_attachment(
        self,
        to: str,
        subject: str,
        body: str,
        attachment: EmailAttachment,
    ) -> bool:
        return self._send(to, subject, body, attachment)

    def _send(
        self,
        to: str,
        subject: str,
        body: str,
        attachment: Optional[EmailAttachment] = None,
    ) -> bool:
        if not self.enabled():
            logger.debug("[EMAIL/SMTP] Disabled; skipping message to %s", to)
            return False
        if not to:
            return False

        try:
            self._deliver(self._build_message(to, subject, body, attachment))
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("[EMAIL/SMTP] Failed to send to %s: %s", to, exc)
            return False

        logger.info("[EMAIL/SMTP] Sent '%s' to %s", subject, to, extra={"channel": "email"})
        return True


def create_email_sender(config: Optional[Settings] = None) -> EmailSender:
    config = config or settings
    provider = config.EMAIL_PROVIDER.strip().lower()
    if provider == "smtp":
        return SmtpEmailSender(config)
    if provider != "simulation":
        logger.warning("Unknown email provider '%s'; using simulation", config.EMAIL_PROVIDER)
    return SimulationEmailSender(enabled=config.EMAIL_ENABLED, from_address=config.EMAIL_FROM)
