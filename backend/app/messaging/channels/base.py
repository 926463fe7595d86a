"""
base.py - Transport interfaces consumed by the broadcast service.

    InboxWriter   persist(identity_id, payload)          → bool
    EmailSender   send(to, subject, body)                → bool
                  send_with_attachment(..., attachment)  → bool
    SmsSender     send(to, body)                         → bool

"Disabled" is something a transport reports about itself through
enabled(); the broadcast service only reads it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Union


@dataclass(frozen=True)
class EmailAttachment:
    """A file attached to an outgoing email (calendar invites, mostly)."""
    filename: str
    content: Union[str, bytes]
    content_type: str = "text/calendar"

    @property
    def data(self) -> bytes:
        if isinstance(self.content, bytes):
            return self.content
        return self.content.encode("utf-8")


class DeliveryChannel(ABC):
    """Common surface of every transport."""

    name: str = "channel"
    provider: str = "unknown"

    @abstractmethod
    def enabled(self) -> bool:
        ...

    def describe(self) -> Dict[str, Any]:
        return {"channel": self.name, "provider": self.provider, "enabled": self.enabled()}


class InboxWriter(DeliveryChannel):
    name = "inbox"

    @abstractmethod
    def persist(self, identity_id: str, payload: Dict[str, Any]) -> bool:
        """Store one inbox message for the given identity."""
        ...


class EmailSender(DeliveryChannel):
    name = "email"

    @abstractmethod
    def send(self, to: str, subject: str, body: str) -> bool:
        ...

    @abstractmethod
    def send_with_attachment(
        self,
        to: str,
        subject: str,
        body: str,
        attachment: EmailAttachment,
    ) -> bool:
        ...


class SmsSender(DeliveryChannel):
    name = "sms"

    @abstractmethod
    def send(self, to: str, body: str) -> bool:
        ...
