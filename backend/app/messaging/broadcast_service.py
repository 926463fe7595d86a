"""
broadcast_service.py - Admin broadcast orchestration.

Coordinates one broadcast from validated request to per-channel report:
    1. Validates the request (subject, message, channels)
    2. Resolves categories + direct emails into recipients, once
    3. Warns up front about requested channels whose transport is off
    4. Builds the inbox / email / SMS payloads, once
    5. Delivers recipient by recipient, inbox → email → sms
    6. Returns the accumulated BroadcastResult

═══════════════════════════════════════════════════════════════════════════
ORCHESTRATION FLOW
═══════════════════════════════════════════════════════════════════════════

    ┌─────────────────────┐
    │  BroadcastRequest   │
    └─────────┬───────────┘
              │  validate (raises ValidationError)
              ▼
    ┌─────────────────────┐
    │  RecipientResolver  │  empty → NoRecipientsError, nothing sent
    └─────────┬───────────┘
              │
              ▼
    ┌─────────────────────┐
    │  for each recipient │  inbox  ─► InboxWriter.persist
    │    for each channel │  email  ─► EmailSender.send
    │                     │  sms    ─► SmsSender.send
    └─────────┬───────────┘
              │  sent / skipped + reason
              ▼
    ┌─────────────────────┐
    │  BroadcastResult    │
    └─────────────────────┘

═══════════════════════════════════════════════════════════════════════════
FAILURE POLICY
═══════════════════════════════════════════════════════════════════════════

Only caller-input problems raise. A recipient missing an address, a
disabled transport or a provider error is counted as skipped with a
reason and the loop moves on. One attempt per recipient per channel;
there is no retry.

    Channel   Check order                       Reason on skip
    ───────   ───────────────────────────────   ──────────────────────────────────
    inbox     linked identity                   no linked inbox identity
              persist()                         failed to persist (service disabled or error)
    email     address on file                   no email address on file
              transport enabled                 email delivery disabled
              send()                            email provider reported a failure
    sms       phone on file                     no phone number available
              transport enabled                 SMS delivery not configured
              send()                            SMS provider reported a failure
"""

from __future__ import annotations

import copy
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from backend.app.core.errors import NoRecipientsError, ValidationError
from backend.app.core.logging_config import bind_log_context
from backend.app.messaging.channels.base import (
    DeliveryChannel,
    EmailSender,
    InboxWriter,
    SmsSender,
)
from backend.app.messaging.models import (
    CHANNEL_ALIASES,
    BroadcastHistoryRecord,
    BroadcastRequest,
    BroadcastResult,
    DeliveryChannelName,
    Recipient,
    RecipientCategory,
)
from backend.app.messaging.recipient_resolver import RecipientResolver

logger = logging.getLogger(__name__)

DEFAULT_SENDER_LABEL = "Kids in Motion Admin"
DEFAULT_ORGANIZATION = "Kids in Motion"
SMS_MAX_LENGTH = 320
MAX_HISTORY_RECORDS = 500

EMAIL_DISABLED_WARNING = "Email delivery is disabled. No emails were sent."
SMS_DISABLED_WARNING = "SMS delivery is disabled or not configured. No SMS messages were sent."

REASON_NO_INBOX_IDENTITY = "no linked inbox identity"
REASON_INBOX_PERSIST_FAILED = "failed to persist (service disabled or error)"
REASON_NO_EMAIL = "no email address on file"
REASON_EMAIL_DISABLED = "email delivery disabled"
REASON_EMAIL_FAILED = "email provider reported a failure"
REASON_NO_PHONE = "no phone number available"
REASON_SMS_DISABLED = "SMS delivery not configured"
REASON_SMS_FAILED = "SMS provider reported a failure"


def _is_blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


# ═══════════════════════════════════════════════════════════════════════════
# Request Parsing
# ═══════════════════════════════════════════════════════════════════════════

def validate_request(request: Optional[BroadcastRequest]) -> None:
    """Raise ValidationError for the first problem found, in a fixed order."""
    if request is None:
        raise ValidationError("Request payload is required")
    if _is_blank(request.subject):
        raise ValidationError("Message subject/title is required", field="subject")
    if _is_blank(request.message):
        raise ValidationError("Message content is required", field="message")
    if not any(not _is_blank(c) for c in request.delivery_channels or []):
        raise ValidationError(
            "At least one delivery channel must be selected", field="deliveryChannels",
        )


def normalize_channels(raw_channels: Iterable[Optional[str]]) -> List[str]:
    """Lower-cased, trimmed, de-duplicated channel names in request order."""
    channels: List[str] = []
    for raw in raw_channels or []:
        if _is_blank(raw):
            continue
        name = raw.strip().lower()
        if name not in channels:
            channels.append(name)
    return channels


def parse_categories(raw_ids: Iterable[Optional[str]]) -> List[RecipientCategory]:
    """Known category ids in request order; unknown ids are dropped."""
    categories: List[RecipientCategory] = []
    for raw in raw_ids or []:
        category = RecipientCategory.from_id(raw)
        if category is None:
            if raw:
                logger.debug("Ignoring unknown recipient category %r", raw)
            continue
        if category not in categories:
            categories.append(category)
    return categories


# ═══════════════════════════════════════════════════════════════════════════
# Payload Builders
# ═══════════════════════════════════════════════════════════════════════════

def build_inbox_template(
    request: BroadcastRequest,
    initiated_by: Optional[str],
    channels: List[str],
    *,
    sender_label: str = DEFAULT_SENDER_LABEL,
) -> Dict[str, Any]:
    """Shared inbox document; per-recipient fields are merged in later."""
    return {
        "id": f"broadcast_{int(time.time() * 1000)}",
        "type": "admin-broadcast",
        "title": request.subject,
        "message": request.message,
        "from": initiated_by if not _is_blank(initiated_by) else sender_label,
        "channels": list(channels),
        "timestamp": _timestamp(),
        "read": False,
    }


def build_email_body(
    message: str,
    initiated_by: Optional[str],
    *,
    organization: str = DEFAULT_ORGANIZATION,
) -> str:
    body = message
    if not _is_blank(initiated_by):
        body += f"\n\n— {initiated_by}"
    body += f"\n{organization} Admin Team"
    return body


def build_sms_body(
    subject: Optional[str],
    message: str,
    *,
    max_length: int = SMS_MAX_LENGTH,
) -> str:
    """
    "<subject>: <message>", hard-capped at ``max_length`` characters.

    Longer text is cut to ``max_length - 3`` characters plus "...", so a
    truncated body is always exactly ``max_length`` long.
    """
    combined = f"{subject.strip()}: {message}" if not _is_blank(subject) else message
    if len(combined) > max_length:
        return combined[: max_length - 3] + "..."
    return combined


# ═══════════════════════════════════════════════════════════════════════════
# Orchestrator
# ═══════════════════════════════════════════════════════════════════════════

class BroadcastService:
    """
    Fans one admin message out to resolved recipients over inbox, email
    and SMS.

    The service holds no per-broadcast state; every call builds and
    returns its own BroadcastResult.
    """

    def __init__(
        self,
        resolver: RecipientResolver,
        inbox: InboxWriter,
        email: EmailSender,
        sms: SmsSender,
        *,
        organization: str = DEFAULT_ORGANIZATION,
        sender_label: str = DEFAULT_SENDER_LABEL,
        sms_max_length: int = SMS_MAX_LENGTH,
    ):
        self.resolver = resolver
        self.inbox = inbox
        self.email = email
        self.sms = sms
        self.organization = organization
        self.sender_label = sender_label
        self.sms_max_length = sms_max_length

    def channels(self) -> List[DeliveryChannel]:
        return [self.inbox, self.email, self.sms]

    def broadcast(
        self,
        request: Optional[BroadcastRequest],
        initiated_by: Optional[str] = None,
    ) -> BroadcastResult:
        """
        Run one broadcast.

        Parameters
        ----------
        request : BroadcastRequest
            Subject, message, channels, categories, direct emails.
        initiated_by : str | None
            Caller identity used for attribution.

        Returns
        -------
        BroadcastResult

        Raises
        ------
        ValidationError
            Missing request, blank subject or message, no channels.
        NoRecipientsError
            Nobody matched; no transport is called.
        """
        validate_request(request)

        channels = normalize_channels(request.delivery_channels)
        canonical = {CHANNEL_ALIASES[c] for c in channels if c in CHANNEL_ALIASES}
        send_inbox = DeliveryChannelName.INBOX in canonical
        send_email = DeliveryChannelName.EMAIL in canonical
        send_sms = DeliveryChannelName.SMS in canonical

        categories = parse_categories(request.categories)
        resolution = self.resolver.resolve(categories, request.direct_emails)
        if resolution.is_empty:
            raise NoRecipientsError()

        started = time.perf_counter()
        recipients = resolution.recipients

        result = BroadcastResult(
            total_recipients=len(recipients),
            requested_channels=set(channels),
            direct_emails_without_accounts=list(resolution.direct_emails_without_accounts),
            category_counts={c.id: n for c, n in resolution.category_counts.items()},
        )

        logger.info(
            "Broadcasting '%s' to %d recipients via %s",
            request.subject, len(recipients), channels,
            extra={"initiated_by": initiated_by, "recipient_count": len(recipients)},
        )

        if send_email and not self.email.enabled():
            result.add_global_warning(EMAIL_DISABLED_WARNING)
        if send_sms and not self.sms.enabled():
            result.add_global_warning(SMS_DISABLED_WARNING)

        inbox_template = build_inbox_template(
            request, initiated_by, channels, sender_label=self.sender_label,
        )
        email_body = build_email_body(request.message, initiated_by, organization=self.organization)
        sms_body = build_sms_body(request.subject, request.message, max_length=self.sms_max_length)

        with bind_log_context(initiated_by=initiated_by, recipient_count=len(recipients)):
            for recipient in recipients:
                if send_inbox:
                    self._handle_inbox(recipient, inbox_template, result)
                if send_email:
                    self._handle_email(recipient, request.subject, email_body, result)
                if send_sms:
                    self._handle_sms(recipient, sms_body, result)

        logger.info(
            "Broadcast complete: inbox %d/%d, email %d/%d, sms %d/%d, %d failures (%.1fms)",
            result.inbox_sent, result.inbox_sent + result.inbox_skipped,
            result.email_sent, result.email_sent + result.email_skipped,
            result.sms_sent, result.sms_sent + result.sms_skipped,
            len(result.failures),
            (time.perf_counter() - started) * 1000,
        )
        return result

    def send_inbox_message(
        self,
        user_id: Optional[str],
        message_data: Optional[Dict[str, Any]],
        initiated_by: Optional[str] = None,
    ) -> bool:
        """Store a single inbox message for one user."""
        if _is_blank(user_id):
            raise ValidationError("User identifier is required", field="userId")

        payload = dict(message_data or {})
        payload.setdefault("userId", user_id)
        payload.setdefault("status", "sent")
        payload.setdefault("from", initiated_by if not _is_blank(initiated_by) else self.sender_label)
        payload["timestamp"] = _timestamp()

        return self.inbox.persist(user_id, payload)

    # ── per-channel delivery ──

    def _handle_inbox(
        self,
        recipient: Recipient,
        template: Dict[str, Any],
        result: BroadcastResult,
    ) -> None:
        if _is_blank(recipient.firebase_uid):
            result.record_skipped(DeliveryChannelName.INBOX, REASON_NO_INBOX_IDENTITY, recipient)
            return

        payload = dict(template)
        payload["recipientEmail"] = recipient.email
        payload["recipientDisplayName"] = recipient.display_name

        if self.inbox.persist(recipient.firebase_uid, payload):
            result.record_sent(DeliveryChannelName.INBOX)
        else:
            result.record_skipped(DeliveryChannelName.INBOX, REASON_INBOX_PERSIST_FAILED, recipient)

    def _handle_email(
        self,
        recipient: Recipient,
        subject: str,
        body: str,
        result: BroadcastResult,
    ) -> None:
        if _is_blank(recipient.email):
            result.record_skipped(DeliveryChannelName.EMAIL, REASON_NO_EMAIL, recipient)
            return
        if not self.email.enabled():
            result.record_skipped(DeliveryChannelName.EMAIL, REASON_EMAIL_DISABLED, recipient)
            return

        if self.email.send(recipient.email, subject, body):
            result.record_sent(DeliveryChannelName.EMAIL)
        else:
            result.record_skipped(DeliveryChannelName.EMAIL, REASON_EMAIL_FAILED, recipient)

    def _handle_sms(
        self,
        recipient: Recipient,
        body: str,
        result: BroadcastResult,
    ) -> None:
        if _is_blank(recipient.phone_number):
            result.record_skipped(DeliveryChannelName.SMS, REASON_NO_PHONE, recipient)
            return
        if not self.sms.enabled():
            result.record_skipped(DeliveryChannelName.SMS, REASON_SMS_DISABLED, recipient)
            return

        if self.sms.send(recipient.phone_number, body):
            result.record_sent(DeliveryChannelName.SMS)
        else:
            result.record_skipped(DeliveryChannelName.SMS, REASON_SMS_FAILED, recipient)


# ═══════════════════════════════════════════════════════════════════════════
# In-Memory Broadcast History (production: database)
# ═══════════════════════════════════════════════════════════════════════════

_broadcast_history: Dict[str, BroadcastHistoryRecord] = {}


def build_history_record(
    request: BroadcastRequest,
    initiated_by: str,
    result: BroadcastResult,
) -> BroadcastHistoryRecord:
    return BroadcastHistoryRecord(
        initiated_by=initiated_by,
        subject=request.subject or "",
        message=request.message or "",
        categories=[c for c in request.categories or [] if c],
        direct_emails=[e.strip() for e in request.direct_emails or [] if e and e.strip()],
        # History owns its own copy of the result.
        result=copy.deepcopy(result),
    )


def store_broadcast_history(
    record: BroadcastHistoryRecord,
    max_records: int = MAX_HISTORY_RECORDS,
) -> None:
    """Store a broadcast history record, evicting the oldest beyond ``max_records``."""
    _broadcast_history[record.broadcast_id] = record
    while len(_broadcast_history) > max(max_records, 1):
        oldest = next(iter(_broadcast_history))
        del _broadcast_history[oldest]
        logger.debug("Evicted broadcast history record %s", oldest)


def get_broadcast_history(broadcast_id: str) -> Optional[BroadcastHistoryRecord]:
    """Retrieve a stored broadcast by ID."""
    return _broadcast_history.get(broadcast_id)


def list_broadcast_history(limit: int = 50) -> List[BroadcastHistoryRecord]:
    """Most recent broadcasts first."""
    records = sorted(_broadcast_history.values(), key=lambda r: r.created_at, reverse=True)
    return records[:limit]
