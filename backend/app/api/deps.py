"""
Shared FastAPI dependencies.

    get_caller            - caller identity from the upstream auth headers
    require_admin         - 403 unless the caller's email is an admin email
    get_record_stores     - process-wide record stores
    get_broadcast_service - BroadcastService wired from settings

Token verification happens upstream; by the time a request reaches this
service the auth layer has set X-User-Email / X-User-Uid.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header

from backend.app.core.config import settings
from backend.app.core.errors import ForbiddenError
from backend.app.messaging.broadcast_service import BroadcastService
from backend.app.messaging.channels.email_sender import create_email_sender
from backend.app.messaging.channels.inbox_writer import create_inbox_writer
from backend.app.messaging.channels.sms_sender import create_sms_sender
from backend.app.messaging.directory import (
    InMemoryParticipantStore,
    InMemoryTeamApplicationStore,
    InMemoryUserDirectory,
    InMemoryVolunteerApplicationStore,
)
from backend.app.messaging.recipient_resolver import RecipientResolver

logger = logging.getLogger(__name__)


@dataclass
class Caller:
    email: Optional[str] = None
    uid: Optional[str] = None

    @property
    def initiated_by(self) -> str:
        """Email, else uid, else the default sender label."""
        if self.email and self.email.strip():
            return self.email.strip()
        if self.uid and self.uid.strip():
            return self.uid.strip()
        return settings.DEFAULT_SENDER_LABEL


@dataclass
class RecordStores:
    users: InMemoryUserDirectory = field(default_factory=InMemoryUserDirectory)
    participants: InMemoryParticipantStore = field(default_factory=InMemoryParticipantStore)
    volunteer_applications: InMemoryVolunteerApplicationStore = field(
        default_factory=InMemoryVolunteerApplicationStore
    )
    team_applications: InMemoryTeamApplicationStore = field(
        default_factory=InMemoryTeamApplicationStore
    )


def is_admin_email(email: Optional[str]) -> bool:
    if not email or not email.strip():
        return False
    wanted = email.strip().lower()
    return any(a.strip().lower() == wanted for a in settings.ADMIN_EMAILS if a)


async def get_caller(
    x_user_email: Optional[str] = Header(None),
    x_user_uid: Optional[str] = Header(None),
) -> Caller:
    return Caller(email=x_user_email, uid=x_user_uid)


async def require_admin(caller: Caller = Depends(get_caller)) -> Caller:
    if not is_admin_email(caller.email):
        logger.warning("Rejected non-admin caller %s", caller.email or caller.uid or "anonymous")
        raise ForbiddenError("Admin access required to send messages")
    return caller


@lru_cache()
def get_record_stores() -> RecordStores:
    return RecordStores()


@lru_cache()
def get_broadcast_service() -> BroadcastService:
    """Build the resolver and transports once per process."""
    stores = get_record_stores()
    resolver = RecipientResolver(
        stores.users,
        stores.participants,
        stores.volunteer_applications,
        stores.team_applications,
    )
    service = BroadcastService(
        resolver,
        create_inbox_writer(settings),
        create_email_sender(settings),
        create_sms_sender(settings),
        organization=settings.ORGANIZATION_NAME,
        sender_label=settings.DEFAULT_SENDER_LABEL,
        sms_max_length=settings.SMS_MAX_LENGTH,
    )
    logger.info(
        "Broadcast service ready (inbox=%s, email=%s, sms=%s)",
        service.inbox.provider, service.email.provider, service.sms.provider,
    )
    return service
