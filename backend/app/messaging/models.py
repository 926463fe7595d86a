"""
models.py - Shared data structures for the broadcast messaging system.

Defines:
    • RecipientCategory - closed set of recipient selectors + wire ids
    • ApplicationStatus - volunteer / team application lifecycle
    • UserRecord, ParticipantRecord, VolunteerApplicationRecord,
      TeamApplicationRecord - read-only views of the record stores
    • Recipient          - one deduplicated addressee of a broadcast
    • BroadcastRequest   - the administrator's input
    • DeliveryFailure    - one itemised per-channel failure
    • BroadcastResult    - per-call accumulator returned to the caller
    • BroadcastHistoryRecord - audit entry kept after each broadcast

═══════════════════════════════════════════════════════════════════════════
RECIPIENT CATEGORIES
═══════════════════════════════════════════════════════════════════════════

    Category               Wire id               Source
    ────────────────────   ───────────────────   ─────────────────────────────
    ALL_USERS              all                   user directory
    PARENTS                parents               parent of each participant
    VOLUNTEERS             volunteers            volunteer applications (any)
    APPROVED_VOLUNTEERS    approved              volunteer applications APPROVED
    PENDING_APPLICATIONS   pending               volunteer applications PENDING
    COACHES                coaches               approved team apps, slug coach
    EVENT_COORDINATORS     event-coordinators    approved team apps, slug
                                                 event-coordinator
    SOCIAL_MEDIA_TEAM      social-media          approved team apps, slug
                                                 social-media-team
    FUNDRAISING_TEAM       fundraising           (not resolved)
    DIRECT_EMAILS          direct                raw addresses from the request
    EVENT_PARENTS          event-parents         (not resolved)
    EVENT_VOLUNTEERS       event-volunteers      (not resolved)

═══════════════════════════════════════════════════════════════════════════
RECIPIENT IDENTITY
═══════════════════════════════════════════════════════════════════════════

A recipient is keyed by, in order of preference:

    uid:<firebase uid>  →  email:<lower-cased email>  →  id:<user id>  →  anon:<n>

so the same person matched by several categories (or also listed as a
direct email) appears once, tagged with every category that matched.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Set


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class RecipientCategory(str, Enum):
    """Recipient selectors. The value is the stable wire id."""
    ALL_USERS            = "all"
    PARENTS              = "parents"
    VOLUNTEERS           = "volunteers"
    APPROVED_VOLUNTEERS  = "approved"
    PENDING_APPLICATIONS = "pending"
    COACHES              = "coaches"
    EVENT_COORDINATORS   = "event-coordinators"
    SOCIAL_MEDIA_TEAM    = "social-media"
    FUNDRAISING_TEAM     = "fundraising"
    DIRECT_EMAILS        = "direct"
    EVENT_PARENTS        = "event-parents"
    EVENT_VOLUNTEERS     = "event-volunteers"

    @property
    def id(self) -> str:
        return self.value

    @property
    def team_slug(self) -> Optional[str]:
        return TEAM_SLUGS.get(self)

    @classmethod
    def from_id(cls, raw: Optional[str]) -> Optional["RecipientCategory"]:
        """Parse a wire id (case/whitespace-insensitive). Unknown → None."""
        if raw is None:
            return None
        return CATEGORY_BY_ID.get(raw.strip().lower())


class ApplicationStatus(str, Enum):
    """Review state of a volunteer or team application."""
    PENDING   = "PENDING"
    APPROVED  = "APPROVED"
    REJECTED  = "REJECTED"
    SUSPENDED = "SUSPENDED"


class DeliveryChannelName(str, Enum):
    """Channel labels used in failures and counters."""
    INBOX = "inbox"
    EMAIL = "email"
    SMS   = "sms"


# ═══════════════════════════════════════════════════════════════════════════
# Category lookup tables
# ═══════════════════════════════════════════════════════════════════════════

CATEGORY_BY_ID: Dict[str, RecipientCategory] = {c.value: c for c in RecipientCategory}

TEAM_SLUGS: Dict[RecipientCategory, str] = {
    RecipientCategory.COACHES:            "coach",
    RecipientCategory.EVENT_COORDINATORS: "event-coordinator",
    RecipientCategory.SOCIAL_MEDIA_TEAM:  "social-media-team",
}

# Channel names accepted on the wire → canonical channel
CHANNEL_ALIASES: Dict[str, DeliveryChannelName] = {
    "inbox": DeliveryChannelName.INBOX,
    "email": DeliveryChannelName.EMAIL,
    "sms":   DeliveryChannelName.SMS,
    "phone": DeliveryChannelName.SMS,
}


def _generate_id() -> str:
    return f"BRD-{uuid.uuid4().hex[:12].upper()}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════════════════
# Record-store views
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class UserRecord:
    """A user account as exposed by the user directory."""
    user_id: Optional[str] = None
    firebase_uid: Optional[str] = None
    email: Optional[str] = None
    phone_number: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None


@dataclass
class ParticipantRecord:
    """A child's event registration; only the parent matters here."""
    participant_id: str
    parent: Optional[UserRecord] = None


@dataclass
class VolunteerApplicationRecord:
    """A volunteer-employee application."""
    application_id: str
    user: Optional[UserRecord] = None
    status: ApplicationStatus = ApplicationStatus.PENDING


@dataclass
class TeamApplicationRecord:
    """A volunteer's request to join a named internal team."""
    application_id: str
    team_name: str = ""
    user: Optional[UserRecord] = None
    status: ApplicationStatus = ApplicationStatus.PENDING


# ═══════════════════════════════════════════════════════════════════════════
# Broadcast data structures
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class Recipient:
    """
    One addressee of a broadcast, built fresh per resolution.

    Attributes
    ----------
    user_id : str | None
        Internal user id.
    firebase_uid : str | None
        Linked inbox identity; required for inbox delivery.
    email, phone_number : str | None
        Sanitised contact details.
    display_name : str | None
        "First Last", falling back to the email.
    categories : list of RecipientCategory
        Every category this recipient matched, in first-match order.
    included_by_direct_email : bool
        The request listed this recipient's address explicitly.
    direct_email_only : bool
        Synthetic recipient with no backing account.
    """
    user_id: Optional[str] = None
    firebase_uid: Optional[str] = None
    email: Optional[str] = None
    phone_number: Optional[str] = None
    display_name: Optional[str] = None
    categories: List[RecipientCategory] = field(default_factory=list)
    included_by_direct_email: bool = False
    direct_email_only: bool = False
    included_by_direct_phone: bool = False
    direct_phone_only: bool = False

    def add_category(self, category: Optional[RecipientCategory]) -> None:
        if category is not None and category not in self.categories:
            self.categories.append(category)

    def has_category(self, category: RecipientCategory) -> bool:
        return category in self.categories

    def snapshot(self) -> Dict[str, Optional[str]]:
        """Contact snapshot attached to delivery failures."""
        return {
            "displayName": self.display_name,
            "email": self.email,
            "phone": self.phone_number,
            "firebaseUid": self.firebase_uid,
        }


@dataclass
class BroadcastRequest:
    """Administrator input for one broadcast."""
    subject: Optional[str] = None
    message: Optional[str] = None
    delivery_channels: List[str] = field(default_factory=list)
    categories: List[str] = field(default_factory=list)
    direct_emails: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class DeliveryFailure:
    """A single delivery that did not happen, and why."""
    channel: str
    reason: str
    recipient: Dict[str, Optional[str]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "channel": self.channel,
            "reason": self.reason,
            "recipient": dict(self.recipient),
        }


@dataclass
class BroadcastResult:
    """Counters, warnings and failures accumulated during one broadcast."""
    total_recipients: int = 0
    inbox_sent: int = 0
    inbox_skipped: int = 0
    email_sent: int = 0
    email_skipped: int = 0
    sms_sent: int = 0
    sms_skipped: int = 0
    requested_channels: Set[str] = field(default_factory=set)
    direct_emails_without_accounts: List[str] = field(default_factory=list)
    category_counts: Dict[str, int] = field(default_factory=dict)
    failures: List[DeliveryFailure] = field(default_factory=list)
    global_warnings: List[str] = field(default_factory=list)

    def record_sent(self, channel: DeliveryChannelName) -> None:
        attr = f"{channel.value}_sent"
        setattr(self, attr, getattr(self, attr) + 1)

    def record_skipped(
        self,
        channel: DeliveryChannelName,
        reason: str,
        recipient: Recipient,
    ) -> None:
        attr = f"{channel.value}_skipped"
        setattr(self, attr, getattr(self, attr) + 1)
        self.failures.append(
            DeliveryFailure(channel=channel.value, reason=reason, recipient=recipient.snapshot())
        )

    def add_global_warning(self, warning: Optional[str]) -> None:
        if warning and warning.strip():
            self.global_warnings.append(warning)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalRecipients": self.total_recipients,
            "inboxSent": self.inbox_sent,
            "inboxSkipped": self.inbox_skipped,
            "emailSent": self.email_sent,
            "emailSkipped": self.email_skipped,
            "smsSent": self.sms_sent,
            "smsSkipped": self.sms_skipped,
            "requestedChannels": sorted(self.requested_channels),
            "directEmailsWithoutAccounts": list(self.direct_emails_without_accounts),
            "categoryCounts": dict(self.category_counts),
            "warnings": list(self.global_warnings),
            "failures": [f.to_dict() for f in self.failures],
        }


@dataclass
class BroadcastHistoryRecord:
    """Audit entry written after a broadcast completes."""
    broadcast_id: str = field(default_factory=_generate_id)
    initiated_by: str = ""
    subject: str = ""
    message: str = ""
    categories: List[str] = field(default_factory=list)
    direct_emails: List[str] = field(default_factory=list)
    result: BroadcastResult = field(default_factory=BroadcastResult)
    created_at: datetime = field(default_factory=_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.broadcast_id,
            "initiatedBy": self.initiated_by,
            "subject": self.subject,
            "message": self.message,
            "categories": list(self.categories),
            "directEmails": list(self.direct_emails),
            "createdAt": self.created_at.isoformat(),
            **self.result.to_dict(),
        }
