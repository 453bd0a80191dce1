"""
alert_service.py — Alert creation, listing and finalization.

═══════════════════════════════════════════════════════════════════════════
CREATION FLOW
═══════════════════════════════════════════════════════════════════════════

    1. Validate the contact list, normalize the sender phone
    2. Resolve the sender in the directory        (403 if unknown)
    3. For each contact:
         normalize          → skip if invalid
         resolve            → skip if unregistered
         build recipient copy, add to detalles
    4. Write all copies + sender summary + index   (one batch, only if
       at least one contact was registered)
    5. Push once to each registered contact with a token
    6. Report registrados / noRegistrados / detalles

Skipped contacts are counted, not reported as errors: reaching the
contacts that are registered matters more than rejecting a partly bad
list. Push failures never affect the response.

Each external call is issued only after the previous one has returned;
there is no cross-request locking, so a finalize racing a create on the
same alert resolves as last write wins.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from panic_relay.app.alerts.builder import AlertDraft
from panic_relay.app.alerts.models import (
    AlertBox,
    AlertCreationResult,
    AlertFanout,
    AlertListing,
    AlertRef,
    AlertStatus,
    RegisteredUser,
)
from panic_relay.app.alerts.notifier import Notifier, PushNotice
from panic_relay.app.alerts.phone import mask_phone, normalize_phone
from panic_relay.app.core.errors import (
    AlertFinalizationError,
    AlertNotFoundError,
    InvalidContactsError,
    InvalidPhoneError,
    SenderNotRegisteredError,
    StoreError,
    UserNotFoundError,
)
from panic_relay.app.storage.base import AlertStore

logger = logging.getLogger(__name__)

FINALIZED_MESSAGE = "✅ Alerta finalizada correctamente."


class AlertService:
    """Composes the store and the notifier; both are injected at startup."""

    def __init__(self, store: AlertStore, notifier: Notifier):
        self.store = store
        self.notifier = notifier

    # ───────────────────────────────────────────────────────────────────
    # Creation
    # ───────────────────────────────────────────────────────────────────

    def create_alert(
        self,
        *,
        sender_phone: Any,
        contacts: Optional[Sequence[Any]],
        sender_name: Optional[str] = None,
        message: Optional[str] = None,
        location: Any = None,
    ) -> AlertCreationResult:
        if contacts is None or isinstance(contacts, (str, bytes, dict)):
            raise InvalidContactsError()
        contacts = list(contacts)

        sender_clean = normalize_phone(sender_phone)
        if sender_clean is None:
            raise InvalidPhoneError("Número del remitente inválido.", field="senderPhone")

        sender = self.store.find_user_by_phone(sender_clean)
        if sender is None:
            logger.warning("Alert rejected: sender %s not registered", mask_phone(sender_clean))
            raise SenderNotRegisteredError()

        draft = AlertDraft(
            sender_name=(sender_name or "").strip() or sender.display_name,
            sender_phone=sender_clean,
            message=message,
            location=location,
        )

        result = AlertCreationResult(alert_id=None, contact_count=len(contacts))
        recipients: Dict[str, RegisteredUser] = {}
        copies: Dict[str, Dict[str, Any]] = {}

        for raw in contacts:
            phone = normalize_phone(raw)
            if phone is None:
                logger.debug("Contact %s skipped: invalid number", mask_phone(str(raw)))
                continue

            user = self.store.find_user_by_phone(phone)
            if user is None:
                logger.debug("Contact %s skipped: not registered", mask_phone(phone))
                continue

            copies[user.user_id] = draft.recipient_copy(phone)
            recipients[user.user_id] = user
            result.registered.append(user.descriptor())

        if not result.registered:
            logger.info(
                "Alert from %s reached no registered contact (%d given)",
                mask_phone(sender_clean), len(contacts),
                extra={"recipient_count": 0, "unregistered_count": len(contacts)},
            )
            return result

        fanout = AlertFanout(
            alert_id=draft.alert_id,
            sender_user_id=sender.user_id,
            sender_summary=draft.sender_summary(u.descriptor() for u in recipients.values()),
            recipient_copies=copies,
        )
        self.store.write_fanout(fanout)
        result.alert_id = draft.alert_id

        notice = PushNotice(
            alert_id=draft.alert_id,
            sender_name=draft.sender_name,
            sender_phone=sender_clean,
            message=message,
        )
        for user in recipients.values():
            push = self.notifier.notify(user, notice)
            if push is not None:
                result.pushes.append(push)

        logger.info(
            "Alert %s from %s: %d registered, %d unregistered, %d pushes",
            draft.alert_id, mask_phone(sender_clean),
            len(result.registered), result.unregistered_count, len(result.pushes),
            extra={
                "alert_id": draft.alert_id,
                "recipient_count": len(result.registered),
                "unregistered_count": result.unregistered_count,
            },
        )
        return result

    # ───────────────────────────────────────────────────────────────────
    # Listing
    # ───────────────────────────────────────────────────────────────────

    def list_alerts(self, raw_phone: Any) -> AlertListing:
        phone = normalize_phone(raw_phone)
        if phone is None:
            raise InvalidPhoneError("Número inválido.", field="telefono")

        user = self.store.find_user_by_phone(phone)
        if user is None:
            raise UserNotFoundError()

        return AlertListing(
            phone=phone,
            received=self.store.list_alerts(user.user_id, AlertBox.RECEIVED),
            sent=self.store.list_alerts(user.user_id, AlertBox.SENT),
        )

    # ───────────────────────────────────────────────────────────────────
    # Finalization
    # ───────────────────────────────────────────────────────────────────

    def finalize_alert(self, alert_id: str) -> int:
        """
        Mark every copy of ``alert_id`` as finished.

        Returns the number of copies updated. Finalizing an already
        finished alert updates the same copies again and succeeds.

        Alerts without an index entry come from older revisions, where a
        recipient's copy may have its own id. For those, every recipient
        listed in the sender summary also has its still-active received
        copies from the same sender finished.
        """
        try:
            refs = self.store.locate_alert(alert_id)
            updated = sum(
                1 for ref in refs
                if self.store.set_status(ref, alert_id, AlertStatus.FINISHED)
            )
            if refs and not self.store.has_index_entry(alert_id):
                updated += self._finalize_inline_recipients(alert_id, refs)
        except StoreError as exc:
            logger.error("Error finalizing alert %s: %s", alert_id, exc.details)
            raise AlertFinalizationError(alert_id) from exc
        except Exception as exc:
            logger.exception("Unexpected error finalizing alert %s", alert_id)
            raise AlertFinalizationError(alert_id) from exc

        if updated == 0:
            raise AlertNotFoundError(alert_id)

        logger.info(
            "Alert %s finalized (%d copies)", alert_id, updated,
            extra={"alert_id": alert_id},
        )
        return updated

    def _finalize_inline_recipients(self, alert_id: str, refs: List[AlertRef]) -> int:
        done = {(ref.user_id, alert_id) for ref in refs if ref.box == AlertBox.RECEIVED}
        updated = 0
        for ref in refs:
            if ref.box != AlertBox.SENT:
                continue
            summary = self.store.get_alert(ref.user_id, AlertBox.SENT, alert_id) or {}
            sender_phone = summary.get("emisor") or summary.get("senderPhone")
            if not sender_phone:
                continue

            for entry in summary.get("destinatarios") or []:
                user_id = self._recipient_user_id(entry)
                if user_id is None:
                    continue
                for copy_id in self.store.find_active_received(user_id, sender_phone):
                    if (user_id, copy_id) in done:
                        continue
                    done.add((user_id, copy_id))
                    if self.store.set_status(AlertRef(user_id, AlertBox.RECEIVED), copy_id,
                                             AlertStatus.FINISHED):
                        updated += 1
        if updated:
            logger.info(
                "Alert %s: %d inline-recipient copies finished", alert_id, updated,
                extra={"alert_id": alert_id},
            )
        return updated

    def _recipient_user_id(self, entry: Any) -> Optional[str]:
        if not isinstance(entry, dict):
            return None
        if entry.get("id"):
            return str(entry["id"])
        phone = normalize_phone(entry.get("telefono"))
        if phone is None:
            return None
        user = self.store.find_user_by_phone(phone)
        return user.user_id if user else None
