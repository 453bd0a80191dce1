"""
firestore_store.py — Cloud Firestore backend.

Layout:
    usuarios/{uid}                              telefono, nombre, fcmToken
    usuarios/{uid}/alertas_recibidas/{alertId}  recipient copy
    usuarios/{uid}/alertas_enviadas/{alertId}   sender summary
    alertas_index/{alertId}                     refs to every copy

The fan-out is written with write batches. A batch holds at most 500
writes, so very large contact lists are split and are only atomic per
chunk; the index entry goes into the last chunk so it never points at
copies that were not written.

Google client errors are re-raised as StoreError.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from google.api_core.exceptions import GoogleAPICallError, NotFound
from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter

from panic_relay.app.alerts.models import (
    AlertBox,
    AlertFanout,
    AlertRef,
    AlertStatus,
    RegisteredUser,
)
from panic_relay.app.alerts.phone import mask_phone
from panic_relay.app.core.errors import StoreError
from panic_relay.app.storage.base import AlertStore

logger = logging.getLogger(__name__)

MAX_BATCH_WRITES = 500


def _chunks(items: Sequence[Any], size: int) -> Iterator[Sequence[Any]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


class FirestoreAlertStore(AlertStore):
    name = "firestore"

    def __init__(
        self,
        client: firestore.Client,
        *,
        users_collection: str = "usuarios",
        index_collection: str = "alertas_index",
        legacy_scan: bool = True,
    ):
        self._client = client
        self._users = client.collection(users_collection)
        self._index = client.collection(index_collection)
        self._legacy_scan = legacy_scan

    def _alert_doc(self, user_id: str, box: AlertBox, alert_id: str):
        return self._users.document(user_id).collection(box.value).document(alert_id)

    def find_user_by_phone(self, phone: str) -> Optional[RegisteredUser]:
        try:
            query = self._users.where(filter=FieldFilter("telefono", "==", phone)).limit(1)
            docs = list(query.stream())
        except GoogleAPICallError as exc:
            raise StoreError("find_user_by_phone", str(exc)) from exc

        if not docs:
            logger.debug("No user registered for %s", mask_phone(phone))
            return None
        return RegisteredUser.from_document(docs[0].id, docs[0].to_dict() or {})

    def write_fanout(self, fanout: AlertFanout) -> None:
        writes: List[Tuple[Any, Dict[str, Any]]] = [
            (self._alert_doc(uid, AlertBox.RECEIVED, fanout.alert_id), doc)
            for uid, doc in fanout.recipient_copies.items()
        ]
        writes.append(
            (self._alert_doc(fanout.sender_user_id, AlertBox.SENT, fanout.alert_id), fanout.sender_summary)
        )
        writes.append((self._index.document(fanout.alert_id), fanout.index_entry()))

        if fanout.write_count > MAX_BATCH_WRITES:
            logger.warning(
                "Alert %s needs %d writes — committing in chunks of %d",
                fanout.alert_id, fanout.write_count, MAX_BATCH_WRITES,
                extra={"alert_id": fanout.alert_id},
            )

        try:
            for chunk in _chunks(writes, MAX_BATCH_WRITES):
                batch = self._client.batch()
                for ref, data in chunk:
                    batch.set(ref, data)
                batch.commit()
        except GoogleAPICallError as exc:
            raise StoreError("write_fanout", str(exc)) from exc

    def list_alerts(self, user_id: str, box: AlertBox) -> List[Dict[str, Any]]:
        query = (
            self._users.document(user_id)
            .collection(box.value)
            .order_by("timestamp", direction=firestore.Query.DESCENDING)
        )
        try:
            return [{"id": doc.id, **(doc.to_dict() or {})} for doc in query.stream()]
        except GoogleAPICallError as exc:
            raise StoreError("list_alerts", str(exc)) from exc

    def locate_alert(self, alert_id: str) -> List[AlertRef]:
        try:
            entry = self._index.document(alert_id).get()
            if entry.exists:
                return [AlertRef.from_dict(r) for r in (entry.to_dict() or {}).get("refs", [])]
            if not self._legacy_scan:
                return []
            return self._scan_for_alert(alert_id)
        except GoogleAPICallError as exc:
            raise StoreError("locate_alert", str(exc)) from exc

    def _scan_for_alert(self, alert_id: str) -> List[AlertRef]:
        """Walk every user's sub-collections. Only for alerts without an index entry."""
        logger.info("Alert %s has no index entry — scanning all users", alert_id)
        refs: List[AlertRef] = []
        for user_doc in self._users.stream():
            for box in (AlertBox.SENT, AlertBox.RECEIVED):
                if self._alert_doc(user_doc.id, box, alert_id).get().exists:
                    refs.append(AlertRef(user_doc.id, box))
        return refs

    def get_alert(self, user_id: str, box: AlertBox, alert_id: str) -> Optional[Dict[str, Any]]:
        try:
            snap = self._alert_doc(user_id, box, alert_id).get()
        except GoogleAPICallError as exc:
            raise StoreError("get_alert", str(exc)) from exc
        if not snap.exists:
            return None
        return {"id": snap.id, **(snap.to_dict() or {})}

    def has_index_entry(self, alert_id: str) -> bool:
        try:
            return self._index.document(alert_id).get().exists
        except GoogleAPICallError as exc:
            raise StoreError("has_index_entry", str(exc)) from exc

    def find_active_received(self, user_id: str, sender_phone: str) -> List[str]:
        # Older records carry the sender in either field, so only estado
        # is filtered server-side.
        query = (
            self._users.document(user_id)
            .collection(AlertBox.RECEIVED.value)
            .where(filter=FieldFilter("estado", "==", AlertStatus.ACTIVE.value))
        )
        try:
            docs = list(query.stream())
        except GoogleAPICallError as exc:
            raise StoreError("find_active_received", str(exc)) from exc
        matches = []
        for doc in docs:
            data = doc.to_dict() or {}
            if sender_phone in (data.get("emisor"), data.get("senderPhone")):
                matches.append(doc.id)
        return matches

    def set_status(self, ref: AlertRef, alert_id: str, status: AlertStatus) -> bool:
        try:
            self._alert_doc(ref.user_id, ref.box, alert_id).update({"estado": status.value})
        except NotFound:
            logger.warning(
                "Alert copy %s/%s/%s vanished before update",
                ref.user_id, ref.box.value, alert_id,
            )
            return False
        except GoogleAPICallError as exc:
            raise StoreError("set_status", str(exc)) from exc
        return True

    def ping(self) -> Dict[str, Any]:
        try:
            list(self._users.limit(1).stream())
        except GoogleAPICallError as exc:
            raise StoreError("ping", str(exc)) from exc
        return {"project": self._client.project}
