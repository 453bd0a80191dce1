"""
models.py — Shared data structures for the alert relay.

Defines:
    • AlertStatus         — the one-way activa → finalizada flag
    • AlertBox            — per-user sub-collections holding alert copies
    • RegisteredUser      — a directory entry (read-only to this service)
    • RecipientDescriptor — {id, nombre, telefono} as returned to clients
    • AlertRef            — where one copy of an alert lives
    • AlertFanout         — every document one submission writes
    • PushResult          — outcome of one push attempt
    • AlertCreationResult / AlertListing — service results

═══════════════════════════════════════════════════════════════════════════
ALERT IDENTITY
═══════════════════════════════════════════════════════════════════════════

One submission produces one alert id, shared by every copy:

    usuarios/{sender}/alertas_enviadas/{id}       summary, with destinatarios
    usuarios/{contact}/alertas_recibidas/{id}     one per registered contact
    alertas_index/{id}                            refs to all of the above

Finalizing reads the index instead of walking every user.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class AlertStatus(str, Enum):
    """Alert lifecycle. Only ACTIVE → FINISHED exists."""
    ACTIVE   = "activa"
    FINISHED = "finalizada"


class AlertBox(str, Enum):
    """User sub-collections that hold alert copies."""
    SENT     = "alertas_enviadas"
    RECEIVED = "alertas_recibidas"


class PushStatus(str, Enum):
    DELIVERED = "delivered"
    FAILED    = "failed"
    SIMULATED = "simulated"


@dataclass
class RegisteredUser:
    """
    A user registered by the mobile app.

    Directory documents use Spanish field names (``telefono``,
    ``nombre``, ``fcmToken``); ``from_document`` maps them.
    """
    user_id: str
    phone: str
    name: str = ""
    fcm_token: Optional[str] = None

    @classmethod
    def from_document(cls, user_id: str, data: Dict[str, Any]) -> "RegisteredUser":
        token = data.get("fcmToken")
        return cls(
            user_id=user_id,
            phone=str(data.get("telefono", "")),
            name=data.get("nombre") or "",
            fcm_token=token if isinstance(token, str) and token else None,
        )

    @property
    def display_name(self) -> str:
        return self.name or self.phone

    def descriptor(self) -> "RecipientDescriptor":
        return RecipientDescriptor(
            user_id=self.user_id, name=self.display_name, phone=self.phone,
        )


@dataclass(frozen=True)
class RecipientDescriptor:
    user_id: str
    name: str
    phone: str

    def to_dict(self) -> Dict[str, str]:
        return {"id": self.user_id, "nombre": self.name, "telefono": self.phone}


@dataclass(frozen=True)
class AlertRef:
    """Location of one alert copy: owner plus sub-collection."""
    user_id: str
    box: AlertBox

    def to_dict(self) -> Dict[str, str]:
        return {"userId": self.user_id, "coleccion": self.box.value}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AlertRef":
        return cls(user_id=data["userId"], box=AlertBox(data["coleccion"]))


@dataclass
class AlertFanout:
    """
    Every document written for one submission.

    ``recipient_copies`` is keyed by user id, so a contact listed twice
    maps to a single document.
    """
    alert_id: str
    sender_user_id: str
    sender_summary: Dict[str, Any]
    recipient_copies: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    @property
    def refs(self) -> List[AlertRef]:
        refs = [AlertRef(self.sender_user_id, AlertBox.SENT)]
        refs.extend(AlertRef(uid, AlertBox.RECEIVED) for uid in self.recipient_copies)
        return refs

    def index_entry(self) -> Dict[str, Any]:
        return {
            "id": self.alert_id,
            "emisor": self.sender_summary.get("emisor"),
            "refs": [r.to_dict() for r in self.refs],
            "timestamp": self.sender_summary.get("timestamp"),
        }

    @property
    def write_count(self) -> int:
        # sender summary + index entry + one per recipient
        return len(self.recipient_copies) + 2


@dataclass
class PushResult:
    """Outcome of a single push attempt. Never retried."""
    user_id: str
    status: PushStatus
    message_id: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status != PushStatus.FAILED


@dataclass
class AlertCreationResult:
    alert_id: Optional[str]
    contact_count: int
    registered: List[RecipientDescriptor] = field(default_factory=list)
    pushes: List[PushResult] = field(default_factory=list)

    @property
    def unregistered_count(self) -> int:
        return self.contact_count - len(self.registered)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "alertaId": self.alert_id,
            "registrados": len(self.registered),
            "noRegistrados": self.unregistered_count,
            "detalles": [r.to_dict() for r in self.registered],
        }


@dataclass
class AlertListing:
    phone: str
    received: List[Dict[str, Any]] = field(default_factory=list)
    sent: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "telefono": self.phone,
            "recibidas": self.received,
            "enviadas": self.sent,
        }
