"""
FastAPI route: Admin messaging endpoints.

Provides endpoints to:
    POST /api/v1/messages/broadcast                 broadcast to categories / emails
    POST /api/v1/messages/send/{user_id}            store one inbox message
    GET  /api/v1/messages/broadcasts                broadcast history, newest first
    GET  /api/v1/messages/broadcasts/{broadcast_id} one history record
    GET  /api/v1/messages/categories                selectable recipient categories
    GET  /api/v1/messages/health                    transport status
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, Query
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, ConfigDict, Field

from backend.app.api.deps import Caller, get_broadcast_service, require_admin
from backend.app.core.config import settings
from backend.app.core.errors import NotFoundError
from backend.app.messaging.broadcast_service import (
    BroadcastService,
    build_history_record,
    get_broadcast_history,
    list_broadcast_history,
    store_broadcast_history,
)
from backend.app.messaging.models import BroadcastRequest, RecipientCategory

router = APIRouter(prefix="/api/v1/messages", tags=["messaging"])


# ---------------------------------------------------------------------------
# Request / Response Schemas
# ---------------------------------------------------------------------------

class BroadcastMessageRequest(BaseModel):
    """Admin broadcast input. Blank fields are rejected by the service."""
    model_config = ConfigDict(populate_by_name=True)

    subject: Optional[str] = Field(None, examples=["Field update"])
    message: Optional[str] = Field(None, examples=["Saturday practice moves to Field 3."])
    delivery_channels: List[str] = Field(
        default_factory=list,
        alias="deliveryChannels",
        examples=[["inbox", "email"]],
        description="inbox / email / sms (phone is accepted for sms)",
    )
    categories: List[str] = Field(default_factory=list, examples=[["parents", "coaches"]])
    direct_emails: List[str] = Field(
        default_factory=list,
        alias="directEmails",
        examples=[["coach.sam@example.com"]],
    )


class DeliveryIssue(BaseModel):
    channel: str
    reason: str
    recipient: Dict[str, Optional[str]]


class BroadcastMessageResponse(BaseModel):
    """Per-channel counters plus itemised failures."""
    broadcastId: str
    totalRecipients: int
    inboxSent: int
    inboxSkipped: int
    emailSent: int
    emailSkipped: int
    smsSent: int
    smsSkipped: int
    requestedChannels: List[str]
    directEmailsWithoutAccounts: List[str]
    categoryCounts: Dict[str, int]
    warnings: List[str]
    failures: List[DeliveryIssue]


class CategoryInfo(BaseModel):
    id: str
    name: str
    teamSlug: Optional[str] = None


# ---------------------------------------------------------------------------
# Helper Functions
# ---------------------------------------------------------------------------

def _to_domain(request: BroadcastMessageRequest) -> BroadcastRequest:
    return BroadcastRequest(
        subject=request.subject,
        message=request.message,
        delivery_channels=list(request.delivery_channels),
        categories=list(request.categories),
        direct_emails=list(request.direct_emails),
    )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post(
    "/broadcast",
    response_model=BroadcastMessageResponse,
    summary="Broadcast a message",
    description=(
        "Resolves recipient categories and direct emails, then delivers via "
        "inbox, email and SMS. Delivery problems are reported per recipient; "
        "the call only fails for invalid input or when nobody matched."
    ),
)
async def broadcast_message(
    request: BroadcastMessageRequest,
    caller: Caller = Depends(require_admin),
    service: BroadcastService = Depends(get_broadcast_service),
):
    domain_request = _to_domain(request)
    initiated_by = caller.initiated_by

    # Transports do blocking SMTP / HTTP / Firestore I/O per recipient.
    result = await run_in_threadpool(service.broadcast, domain_request, initiated_by)

    record = build_history_record(domain_request, initiated_by, result)
    store_broadcast_history(record, max_records=settings.BROADCAST_HISTORY_MAX)

    return {"broadcastId": record.broadcast_id, **result.to_dict()}


@router.post(
    "/send/{user_id}",
    summary="Send a single inbox message",
    description="Stores one message in a user's in-app inbox.",
)
async def send_inbox_message(
    user_id: str,
    message_data: Optional[Dict[str, Any]] = Body(None),
    caller: Caller = Depends(require_admin),
    service: BroadcastService = Depends(get_broadcast_service),
):
    stored = await run_in_threadpool(
        service.send_inbox_message, user_id, message_data, caller.initiated_by,
    )
    return {
        "success": stored,
        "message": (
            "Message stored in recipient inbox" if stored
            else "Failed to persist message to inbox. Check server configuration."
        ),
        "userId": user_id,
    }


@router.get(
    "/broadcasts",
    summary="List broadcast history",
)
async def list_broadcasts(
    limit: int = Query(50, ge=1, le=500),
    caller: Caller = Depends(require_admin),
):
    records = list_broadcast_history(limit)
    return {
        "count": len(records),
        "broadcasts": [r.to_dict() for r in records],
    }


@router.get(
    "/broadcasts/{broadcast_id}",
    summary="Get one broadcast",
)
async def get_broadcast(
    broadcast_id: str,
    caller: Caller = Depends(require_admin),
):
    record = get_broadcast_history(broadcast_id)
    if record is None:
        raise NotFoundError("Broadcast", broadcast_id=broadcast_id)
    return record.to_dict()


@router.get(
    "/categories",
    response_model=List[CategoryInfo],
    summary="List recipient categories",
)
async def list_categories():
    return [
        CategoryInfo(
            id=c.id,
            name=c.name.replace("_", " ").title(),
            teamSlug=c.team_slug,
        )
        for c in RecipientCategory
    ]


@router.get(
    "/health",
    summary="Messaging transport health",
)
async def health(service: BroadcastService = Depends(get_broadcast_service)):
    channels = [ch.describe() for ch in service.channels()]
    return {
        "status": "healthy" if all(c["enabled"] for c in channels) else "degraded",
        "service": "admin-messaging",
        "channels": channels,
    }
