"""
sms_sender.py - SMS delivery transport.

Providers:
    • simulation - logs and records every message in an outbox
    • twilio     - HTTP POST to the Twilio Messages REST endpoint

═══════════════════════════════════════════════════════════════════════════
NUMBER NORMALISATION
═══════════════════════════════════════════════════════════════════════════

    Input                  Digits          Sent as
    ────────────────────   ─────────────   ─────────────
    (555) 123-4567         10              +15551234567
    1-555-123-4567         11, leading 1   +15551234567
    +44 20 7946 0958       other, has +    unchanged
    555-1234               other           rejected

    POST {base}/Accounts/{sid}/Messages.json
         To=<normalised>&From=<TWILIO_FROM_NUMBER>&Body=<text>
         (HTTP basic auth: account sid / auth token)
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import List, Optional

import httpx

from backend.app.core.config import Settings, settings
from backend.app.messaging.channels.base import SmsSender

logger = logging.getLogger(__name__)

_NON_DIGITS = re.compile(r"[^0-9]")


def normalize_phone_number(raw: Optional[str]) -> Optional[str]:
    """Best-effort E.164 for US numbers. Unusable input → None."""
    if raw is None or not raw.strip():
        return None
    raw = raw.strip()
    digits = _NON_DIGITS.sub("", raw)

    if len(digits) == 10:
        return f"+1{digits}"
    if len(digits) == 11 and digits.startswith("1"):
        return f"+{digits}"
    if raw.startswith("+"):
        return raw

    logger.warning("Unable to normalise phone number %r (digits: %s)", raw, digits)
    return None


@dataclass
class SentSms:
    """Outbox entry kept by the simulation provider."""
    to: str
    body: str


class SimulationSmsSender(SmsSender):
    provider = "simulation"

    def __init__(self, enabled: bool = True):
        self._enabled = enabled
        self.outbox: List[SentSms] = []

    def enabled(self) -> bool:
        return self._enabled

    def send(self, to: str, body: str) -> bool:
        if not self._enabled:
            logger.debug("[SMS] Disabled; skipping message to %s", to)
            return False

        normalized = normalize_phone_number(to)
        if normalized is None:
            return False

        logger.info(
            "[SMS] → %s: %d chars → '%s'",
            normalized, len(body),
            body[:80] + ("..." if len(body) > 80 else ""),
            extra={"channel": "sms"},
        )
        self.outbox.append(SentSms(to=normalized, body=body))
        return True


class TwilioSmsSender(SmsSender):
    """Sends SMS through the Twilio REST API using httpx."""

    provider = "twilio"

    def __init__(
        self,
        config: Optional[Settings] = None,
        *,
        client: Optional[httpx.Client] = None,
    ):
        self._settings = config or settings
        self._client = client

    def _has_credentials(self) -> bool:
        s = self._settings
        return bool(s.TWILIO_ACCOUNT_SID and s.TWILIO_AUTH_TOKEN and s.TWILIO_FROM_NUMBER)

    def enabled(self) -> bool:
        if self._settings.SMS_ENABLED and not self._has_credentials():
            logger.warning("SMS is enabled but Twilio credentials are incomplete")
            return False
        return self._settings.SMS_ENABLED

    def _messages_url(self) -> str:
        base = self._settings.TWILIO_API_BASE_URL.rstrip("/")
        return f"{base}/Accounts/{self._settings.TWILIO_ACCOUNT_SID}/Messages.json"

    def send(self, to: str, body: str) -> bool:
        if not self._settings.SMS_ENABLED:
            logger.debug("[SMS/Twilio] Disabled; skipping message to %s", to)
            return False
        if not self._has_credentials():
            logger.warning("[SMS/Twilio] Credentials not configured; unable to send to %s", to)
            return False

        normalized = normalize_phone_number(to)
        if normalized is None:
            return False

        s = self._settings
        data = {"To": normalized, "From": s.TWILIO_FROM_NUMBER, "Body": body}
        auth = (s.TWILIO_ACCOUNT_SID, s.TWILIO_AUTH_TOKEN)

        try:
            if self._client is not None:
                response = self._client.post(self._messages_url(), data=data, auth=auth)
            else:
                with httpx.Client(timeout=s.SMS_TIMEOUT_SECONDS) as client:
                    response = client.post(self._messages_url(), data=data, auth=auth)
        except httpx.HTTPError as exc:
            logger.error("[SMS/Twilio] Transport error sending to %s: %s", normalized, exc)
            return False

        if response.is_success:
            try:
                sid = response.json().get("sid")
            except ValueError:
                sid = None
            logger.info("[SMS/Twilio] Sent to %s (sid=%s)", normalized, sid, extra={"channel": "sms"})
            return True

        logger.error(
            "[SMS/Twilio] API error sending to %s: HTTP %d %s",
            normalized, response.status_code, response.text[:200],
            extra={"status_code": response.status_code},
        )
        return False


def create_sms_sender(config: Optional[Settings] = None) -> SmsSender:
    config = config or settings
    provider = config.SMS_PROVIDER.strip().lower()
    if provider == "twilio":
        return TwilioSmsSender(config)
    if provider != "simulation":
        logger.warning("Unknown SMS provider '%s'; using simulation", config.SMS_PROVIDER)
    return SimulationSmsSender(enabled=config.SMS_ENABLED)
