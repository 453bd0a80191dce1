"""
builder.py — Alert document construction.

An AlertDraft captures what is common to every copy of one submission;
the recipient copy and the sender summary differ only in who they name.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

from panic_relay.app.alerts.models import AlertStatus, RecipientDescriptor


def new_alert_id() -> str:
    return str(uuid.uuid4())


def utc_timestamp(now: Optional[datetime] = None) -> str:
    """ISO-8601 UTC with millisecond precision; sorts chronologically as text."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class AlertDraft:
    """
    Fields shared by all copies of an alert.

    ``sender_phone`` must already be normalized. ``location`` is stored
    as received (usually ``{"lat": ..., "lng": ...}``).
    """
    sender_name: str
    sender_phone: str
    message: Optional[str] = None
    location: Any = None
    alert_id: str = field(default_factory=new_alert_id)
    timestamp: str = field(default_factory=utc_timestamp)

    def _base(self) -> Dict[str, Any]:
        return {
            "id": self.alert_id,
            "senderName": self.sender_name,
            "senderPhone": self.sender_phone,
            "emisor": self.sender_phone,
            "message": self.message,
            "location": self.location,
            "timestamp": self.timestamp,
            "estado": AlertStatus.ACTIVE.value,
        }

    def recipient_copy(self, recipient_phone: str) -> Dict[str, Any]:
        doc = self._base()
        doc["destinatario"] = recipient_phone
        return doc

    def sender_summary(self, recipients: Iterable[RecipientDescriptor]) -> Dict[str, Any]:
        doc = self._base()
        doc["destinatarios"] = [r.to_dict() for r in recipients]
        return doc
