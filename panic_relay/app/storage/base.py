"""
base.py — Storage contract for the user directory and alert copies.

Both backends (Firestore, in-memory) expose the same operations so the
alert service never knows which one it talks to.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from panic_relay.app.alerts.models import (
    AlertBox,
    AlertFanout,
    AlertRef,
    AlertStatus,
    RegisteredUser,
)


class AlertStore(ABC):
    """Directory lookup plus per-user alert sub-collections."""

    name: str = "store"

    @abstractmethod
    def find_user_by_phone(self, phone: str) -> Optional[RegisteredUser]:
        """Equality lookup on the normalized phone; first match wins."""

    @abstractmethod
    def write_fanout(self, fanout: AlertFanout) -> None:
        """Write every copy of one alert plus its index entry together."""

    @abstractmethod
    def list_alerts(self, user_id: str, box: AlertBox) -> List[Dict[str, Any]]:
        """All copies in one sub-collection, newest first, each with ``id``."""

    @abstractmethod
    def locate_alert(self, alert_id: str) -> List[AlertRef]:
        """Every place a copy of ``alert_id`` is stored."""

    @abstractmethod
    def get_alert(self, user_id: str, box: AlertBox, alert_id: str) -> Optional[Dict[str, Any]]:
        """One copy, or None when it does not exist."""

    @abstractmethod
    def has_index_entry(self, alert_id: str) -> bool:
        """Whether ``alert_id`` was written with an index entry."""

    @abstractmethod
    def find_active_received(self, user_id: str, sender_phone: str) -> List[str]:
        """Ids of ``user_id``'s still-active received copies sent from ``sender_phone``."""

    @abstractmethod
    def set_status(self, ref: AlertRef, alert_id: str, status: AlertStatus) -> bool:
        """Overwrite ``estado``. False when the copy no longer exists."""

    @abstractmethod
    def ping(self) -> Dict[str, Any]:
        """Cheap connectivity check; raises StoreError when unreachable."""
