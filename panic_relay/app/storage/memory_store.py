"""
memory_store.py — Process-local store for development and tests.

Mirrors the Firestore layout with plain dicts. Request handlers run in
a thread pool, so every access goes through one lock.
"""

from __future__ import annotations

import copy
import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from panic_relay.app.alerts.models import (
    AlertBox,
    AlertFanout,
    AlertRef,
    AlertStatus,
    RegisteredUser,
)
from panic_relay.app.alerts.phone import normalize_phone
from panic_relay.app.storage.base import AlertStore

logger = logging.getLogger(__name__)


class InMemoryAlertStore(AlertStore):
    name = "memory"

    def __init__(self, *, legacy_scan: bool = True):
        self._lock = threading.Lock()
        self._users: Dict[str, Dict[str, Any]] = {}
        self._alerts: Dict[Tuple[str, AlertBox], Dict[str, Dict[str, Any]]] = {}
        self._index: Dict[str, Dict[str, Any]] = {}
        self._legacy_scan = legacy_scan

    # ── Directory (registration is external; these feed tests and dev seeds) ──

    def add_user(
        self,
        user_id: str,
        phone: str,
        name: str = "",
        fcm_token: Optional[str] = None,
    ) -> RegisteredUser:
        data: Dict[str, Any] = {"telefono": phone, "nombre": name}
        if fcm_token:
            data["fcmToken"] = fcm_token
        with self._lock:
            self._users[user_id] = data
        return RegisteredUser.from_document(user_id, data)

    def load_seed(self, path: str) -> int:
        """
        Load users from a JSON list of
        ``{"id": ..., "telefono": ..., "nombre": ..., "fcmToken": ...}``.
        Phones are normalized; entries that do not normalize are skipped.
        """
        entries = json.loads(Path(path).read_text(encoding="utf-8"))
        loaded = 0
        for i, entry in enumerate(entries):
            phone = normalize_phone(entry.get("telefono"))
            if phone is None:
                logger.warning("Seed entry %d has an invalid phone — skipped", i)
                continue
            self.add_user(
                str(entry.get("id") or f"user-{i}"),
                phone,
                entry.get("nombre", ""),
                entry.get("fcmToken"),
            )
            loaded += 1
        logger.info("Memory store seeded with %d users from %s", loaded, path)
        return loaded

    def find_user_by_phone(self, phone: str) -> Optional[RegisteredUser]:
        with self._lock:
            for user_id, data in self._users.items():
                if data.get("telefono") == phone:
                    return RegisteredUser.from_document(user_id, dict(data))
        return None

    # ── Alerts ──

    def put_alert(self, user_id: str, box: AlertBox, doc: Dict[str, Any]) -> None:
        """Write a single copy without an index entry (records predating the index)."""
        with self._lock:
            self._alerts.setdefault((user_id, box), {})[doc["id"]] = copy.deepcopy(doc)

    def get_alert(self, user_id: str, box: AlertBox, alert_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            doc = self._alerts.get((user_id, box), {}).get(alert_id)
            return copy.deepcopy(doc) if doc is not None else None

    def write_fanout(self, fanout: AlertFanout) -> None:
        with self._lock:
            for user_id, doc in fanout.recipient_copies.items():
                self._alerts.setdefault((user_id, AlertBox.RECEIVED), {})[fanout.alert_id] = copy.deepcopy(doc)
            self._alerts.setdefault((fanout.sender_user_id, AlertBox.SENT), {})[fanout.alert_id] = (
                copy.deepcopy(fanout.sender_summary)
            )
            self._index[fanout.alert_id] = fanout.index_entry()

    def list_alerts(self, user_id: str, box: AlertBox) -> List[Dict[str, Any]]:
        with self._lock:
            docs = [
                {**copy.deepcopy(doc), "id": alert_id}
                for alert_id, doc in self._alerts.get((user_id, box), {}).items()
            ]
        docs.sort(key=lambda d: d.get("timestamp") or "", reverse=True)
        return docs

    def locate_alert(self, alert_id: str) -> List[AlertRef]:
        with self._lock:
            entry = self._index.get(alert_id)
            if entry is not None:
                return [AlertRef.from_dict(r) for r in entry["refs"]]
            if not self._legacy_scan:
                return []
            return [
                AlertRef(user_id, box)
                for user_id in self._users
                for box in (AlertBox.SENT, AlertBox.RECEIVED)
                if alert_id in self._alerts.get((user_id, box), {})
            ]

    def has_index_entry(self, alert_id: str) -> bool:
        with self._lock:
            return alert_id in self._index

    def find_active_received(self, user_id: str, sender_phone: str) -> List[str]:
        with self._lock:
            received = self._alerts.get((user_id, AlertBox.RECEIVED), {})
            return [
                alert_id for alert_id, doc in received.items()
                if doc.get("estado") == AlertStatus.ACTIVE.value
                and sender_phone in (doc.get("emisor"), doc.get("senderPhone"))
            ]

    def set_status(self, ref: AlertRef, alert_id: str, status: AlertStatus) -> bool:
        with self._lock:
            doc = self._alerts.get((ref.user_id, ref.box), {}).get(alert_id)
            if doc is None:
                return False
            doc["estado"] = status.value
            return True

    def ping(self) -> Dict[str, Any]:
        with self._lock:
            return {"users": len(self._users), "indexed_alerts": len(self._index)}
