"""
recipient_resolver.py - Category selectors + raw addresses → recipients.

═══════════════════════════════════════════════════════════════════════════
RESOLUTION PIPELINE
═══════════════════════════════════════════════════════════════════════════

    categories ──► per-category source lookup ──► upsert(identity key)
                                                        │
    direct emails ──► match resolved │ user lookup │ synthetic
                                                        │
                                                        ▼
                                    recipients, orphan emails, category counts

Upsert rules:
    • new identity key → build a Recipient from the user record
    • known identity key → backfill a missing email / phone only
    • always tag the recipient with the current category

Team categories share one lazy fetch of APPROVED team applications; the
team name is slugified and compared with the category's fixed slug.

Nothing here raises. An empty resolution is a valid result; rejecting it
is the broadcast service's job.
"""

from __future__ import annotations

import itertools
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from backend.app.messaging.directory import (
    ParticipantStore,
    TeamApplicationStore,
    UserDirectory,
    VolunteerApplicationStore,
)
from backend.app.messaging.models import (
    ApplicationStatus,
    Recipient,
    RecipientCategory,
    TeamApplicationRecord,
    UserRecord,
)

logger = logging.getLogger(__name__)

# Phone values written by the registration forms when no number was given
_PHONE_PLACEHOLDERS = frozenset({"pending", "n/a"})

_SLUG_RE = re.compile(r"[^a-z0-9]+")

_anon_counter = itertools.count(1)


# ═══════════════════════════════════════════════════════════════════════════
# Field helpers
# ═══════════════════════════════════════════════════════════════════════════

def sanitize_email(email: Optional[str]) -> Optional[str]:
    if email is None:
        return None
    trimmed = email.strip()
    return trimmed or None


def sanitize_phone(phone: Optional[str]) -> Optional[str]:
    """Blank, "pending" and "n/a" all mean no phone on file."""
    if phone is None:
        return None
    trimmed = phone.strip()
    if not trimmed or trimmed.lower() in _PHONE_PLACEHOLDERS:
        return None
    return trimmed


def build_display_name(user: UserRecord) -> Optional[str]:
    parts = [p.strip() for p in (user.first_name, user.last_name) if p and p.strip()]
    if parts:
        return " ".join(parts)
    return sanitize_email(user.email)


def slugify(value: Optional[str]) -> str:
    if not value:
        return ""
    return _SLUG_RE.sub("-", value.lower()).strip("-")


def identity_key(recipient: Recipient) -> str:
    """uid → email → user id → anonymous, in that order of preference."""
    if recipient.firebase_uid:
        return f"uid:{recipient.firebase_uid}"
    if recipient.email:
        return f"email:{recipient.email.strip().lower()}"
    if recipient.user_id:
        return f"id:{recipient.user_id}"
    return f"anon:{next(_anon_counter)}"


def recipient_from_user(user: UserRecord) -> Recipient:
    email = sanitize_email(user.email)
    return Recipient(
        user_id=user.user_id,
        firebase_uid=user.firebase_uid or None,
        email=email,
        phone_number=sanitize_phone(user.phone_number),
        display_name=build_display_name(user),
    )


# ═══════════════════════════════════════════════════════════════════════════
# Result
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class RecipientResolution:
    """Output of one resolve() call."""
    recipients: List[Recipient] = field(default_factory=list)
    direct_emails_without_accounts: List[str] = field(default_factory=list)
    category_counts: Dict[RecipientCategory, int] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.recipients


# ═══════════════════════════════════════════════════════════════════════════
# Resolver
# ═══════════════════════════════════════════════════════════════════════════

class RecipientResolver:
    """Merges the record stores into one deduplicated recipient list."""

    def __init__(
        self,
        users: UserDirectory,
        participants: ParticipantStore,
        volunteer_applications: VolunteerApplicationStore,
        team_applications: TeamApplicationStore,
    ):
        self._users = users
        self._participants = participants
        self._volunteer_applications = volunteer_applications
        self._team_applications = team_applications

    def resolve(
        self,
        categories: Iterable[RecipientCategory],
        direct_emails: Optional[Iterable[Optional[str]]] = None,
    ) -> RecipientResolution:
        """
        Resolve categories and raw addresses into recipients.

        Parameters
        ----------
        categories : iterable of RecipientCategory
            Duplicates are ignored; unsupported categories match nobody.
        direct_emails : iterable of str | None
            Raw addresses typed by the administrator.

        Returns
        -------
        RecipientResolution
        """
        resolved: Dict[str, Recipient] = {}
        team_cache: Optional[List[TeamApplicationRecord]] = None

        seen = set()
        for category in categories or []:
            if category is None or category in seen:
                continue
            seen.add(category)

            if category is RecipientCategory.ALL_USERS:
                for user in self._users.find_all():
                    self._upsert(resolved, user, category)

            elif category is RecipientCategory.PARENTS:
                for participant in self._participants.find_all():
                    self._upsert(resolved, participant.parent, category)

            elif category is RecipientCategory.VOLUNTEERS:
                for application in self._volunteer_applications.find_all():
                    self._upsert(resolved, application.user, category)

            elif category is RecipientCategory.APPROVED_VOLUNTEERS:
                for application in self._volunteer_applications.find_by_status(
                    ApplicationStatus.APPROVED
                ):
                    self._upsert(resolved, application.user, category)

            elif category is RecipientCategory.PENDING_APPLICATIONS:
                for application in self._volunteer_applications.find_by_status(
                    ApplicationStatus.PENDING
                ):
                    self._upsert(resolved, application.user, category)

            elif category.team_slug is not None:
                if team_cache is None:
                    team_cache = self._team_applications.find_by_status(
                        ApplicationStatus.APPROVED
                    )
                for application in team_cache:
                    if slugify(application.team_name) == category.team_slug:
                        self._upsert(resolved, application.user, category)

            else:
                logger.debug("Category %s has no resolver source; skipped", category.id)

        orphans = self._apply_direct_emails(resolved, direct_emails or [])

        recipients = list(resolved.values())
        counts: Dict[RecipientCategory, int] = {}
        for recipient in recipients:
            for tag in recipient.categories:
                counts[tag] = counts.get(tag, 0) + 1

        logger.info(
            "Resolved %d recipients (%d direct emails without accounts)",
            len(recipients), len(orphans),
            extra={"recipient_count": len(recipients)},
        )
        return RecipientResolution(
            recipients=recipients,
            direct_emails_without_accounts=orphans,
            category_counts=counts,
        )

    # ── internals ──

    @staticmethod
    def _upsert(
        resolved: Dict[str, Recipient],
        user: Optional[UserRecord],
        category: RecipientCategory,
    ) -> Optional[Recipient]:
        if user is None:
            return None

        candidate = recipient_from_user(user)
        key = identity_key(candidate)
        existing = resolved.get(key)

        if existing is None:
            resolved[key] = candidate
            existing = candidate
        else:
            if not existing.email and candidate.email:
                existing.email = candidate.email
            if not existing.phone_number and candidate.phone_number:
                existing.phone_number = candidate.phone_number

        existing.add_category(category)
        return existing

    def _apply_direct_emails(
        self,
        resolved: Dict[str, Recipient],
        direct_emails: Iterable[Optional[str]],
    ) -> List[str]:
        orphans: List[str] = []

        for raw in direct_emails:
            email = sanitize_email(raw)
            if email is None:
                continue

            match = _find_by_email(resolved.values(), email)
            if match is not None:
                match.included_by_direct_email = True
                match.add_category(RecipientCategory.DIRECT_EMAILS)
                continue

            user = self._users.find_by_email(email)
            if user is not None:
                recipient = self._upsert(resolved, user, RecipientCategory.DIRECT_EMAILS)
                if recipient is not None:
                    recipient.included_by_direct_email = True
                continue

            synthetic = Recipient(
                email=email,
                display_name=email,
                included_by_direct_email=True,
                direct_email_only=True,
            )
            synthetic.add_category(RecipientCategory.DIRECT_EMAILS)
            resolved[identity_key(synthetic)] = synthetic
            orphans.append(email)

        return orphans


def _find_by_email(recipients: Iterable[Recipient], email: str) -> Optional[Recipient]:
    wanted = email.lower()
    for recipient in recipients:
        if recipient.email and recipient.email.lower() == wanted:
            return recipient
    return None
