"""
inbox_writer.py - In-app inbox delivery.

Providers:
    • memory     - dict of identity → messages (development, tests)
    • firestore  - one document per message in the "messages" collection

Both stamp "userId" and "timestamp" onto the stored document when the
payload does not already carry them.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from firebase_admin import firestore

from backend.app.core.config import Settings, settings
from backend.app.core.firebase import get_firebase_app
from backend.app.messaging.channels.base import InboxWriter

logger = logging.getLogger(__name__)


def _stamp(identity_id: str, payload: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    document = dict(payload or {})
    document.setdefault("userId", identity_id)
    document.setdefault("timestamp", datetime.now(timezone.utc).isoformat())
    return document


class InMemoryInboxWriter(InboxWriter):
    provider = "memory"

    def __init__(self, enabled: bool = True):
        self._enabled = enabled
        self.messages: Dict[str, List[Dict[str, Any]]] = defaultdict(list)

    def enabled(self) -> bool:
        return self._enabled

    def persist(self, identity_id: str, payload: Dict[str, Any]) -> bool:
        if not self._enabled:
            logger.debug("[INBOX] Disabled; skipping write for %s", identity_id)
            return False
        if not identity_id or not identity_id.strip():
            logger.warning("[INBOX] Cannot store a message without an identity")
            return False

        self.messages[identity_id].append(_stamp(identity_id, payload))
        logger.info("[INBOX] Stored message for %s", identity_id, extra={"channel": "inbox"})
        return True

    def messages_for(self, identity_id: str) -> List[Dict[str, Any]]:
        return list(self.messages.get(identity_id, []))

    def clear(self) -> None:
        self.messages.clear()


class FirestoreInboxWriter(InboxWriter):
    """Writes inbox messages to Cloud Firestore through firebase-admin."""

    provider = "firestore"

    def __init__(self, client: Any = None, collection: Optional[str] = None):
        self._client = client
        self._collection = collection or settings.INBOX_COLLECTION

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "FirestoreInboxWriter":
        config = config or settings
        try:
            client = firestore.client(get_firebase_app(config))
        except Exception as exc:
            logger.warning("[INBOX/Firestore] Firebase unavailable, inbox disabled: %s", exc)
            client = None
        return cls(client=client, collection=config.INBOX_COLLECTION)

    def enabled(self) -> bool:
        return self._client is not None

    def persist(self, identity_id: str, payload: Dict[str, Any]) -> bool:
        if self._client is None:
            logger.debug("[INBOX/Firestore] Disabled; skipping write for %s", identity_id)
            return False
        if not identity_id or not identity_id.strip():
            logger.warning("[INBOX/Firestore] Cannot store a message without an identity")
            return False

        try:
            _, doc_ref = self._client.collection(self._collection).add(_stamp(identity_id, payload))
        except Exception as exc:
            logger.error("[INBOX/Firestore] Failed to store message for %s: %s", identity_id, exc)
            return False

        logger.info("[INBOX/Firestore] Stored message %s", doc_ref.id, extra={"channel": "inbox"})
        return True


def create_inbox_writer(config: Optional[Settings] = None) -> InboxWriter:
    config = config or settings
    provider = config.INBOX_PROVIDER.strip().lower()
    if provider == "firestore":
        return FirestoreInboxWriter.from_settings(config)
    if provider != "memory":
        logger.warning("Unknown inbox provider '%s'; using in-memory inbox", config.INBOX_PROVIDER)
    return InMemoryInboxWriter()
