"""
test_alert_service.py — Alert creation, listing and finalization.

Covers:
    • Data models (RegisteredUser, AlertFanout, AlertCreationResult)
    • Alert document builder (recipient copy, sender summary)
    • Creation fan-out (skip rules, counts, push attempts, summary write)
    • Listing (ordering, empty boxes, errors)
    • Finalization (index lookup, legacy scan, idempotence, store failure)

Run with:
    pytest tests/test_alert_service.py -v
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Tuple
from unittest.mock import MagicMock, patch

import pytest
from google.auth.exceptions import RefreshError

from panic_relay.app.alerts.alert_service import AlertService
from panic_relay.app.alerts.builder import AlertDraft, utc_timestamp
from panic_relay.app.alerts.models import (
    AlertBox,
    AlertCreationResult,
    AlertFanout,
    AlertRef,
    AlertStatus,
    PushResult,
    PushStatus,
    RecipientDescriptor,
    RegisteredUser,
)
from panic_relay.app.alerts.notifier import FcmNotifier, Notifier, PushNotice
from panic_relay.app.core.errors import (
    AlertFinalizationError,
    AlertNotFoundError,
    InvalidContactsError,
    InvalidPhoneError,
    SenderNotRegisteredError,
    StoreError,
    UserNotFoundError,
)
from panic_relay.app.storage.memory_store import InMemoryAlertStore


# ═══════════════════════════════════════════════════════════════════════════
# Test Fixtures
# ═══════════════════════════════════════════════════════════════════════════

ANA_PHONE = "912345678"
BETO_PHONE = "912345679"
CARLA_PHONE = "987654321"
DORA_PHONE = "923456789"


class RecordingNotifier(Notifier):
    """Records every send; optionally fails for selected tokens."""

    name = "recording"

    def __init__(self, failing_tokens=()):
        self.sent: List[Tuple[str, PushNotice]] = []
        self.failing_tokens = set(failing_tokens)

    def send(self, token, notice, *, recipient_id=""):
        self.sent.append((token, notice))
        if token in self.failing_tokens:
            return PushResult(
                user_id=recipient_id, status=PushStatus.FAILED,
                error_message="UnregisteredError: token expired",
            )
        return PushResult(user_id=recipient_id, status=PushStatus.DELIVERED, message_id="msg-1")


def _make_store() -> InMemoryAlertStore:
    store = InMemoryAlertStore()
    store.add_user("u-ana", ANA_PHONE, "Ana")
    store.add_user("u-beto", BETO_PHONE, "Beto", fcm_token="tok-beto")
    store.add_user("u-carla", CARLA_PHONE, "Carla")  # no device registered
    return store


def _make_service(store=None, notifier=None) -> AlertService:
    return AlertService(store or _make_store(), notifier or RecordingNotifier())


def _send(service: AlertService, contacts, sender=ANA_PHONE, **kwargs) -> AlertCreationResult:
    return service.create_alert(
        sender_phone=sender,
        sender_name=kwargs.pop("sender_name", "Ana"),
        message=kwargs.pop("message", "Necesito ayuda"),
        location=kwargs.pop("location", {"lat": -33.45, "lng": -70.66}),
        contacts=contacts,
    )


def _legacy_copy(alert_id, sender_phone, sender_name, recipient=BETO_PHONE):
    """A received copy as older revisions wrote it: its own id, no index entry."""
    return {
        "id": alert_id,
        "senderName": sender_name,
        "senderPhone": sender_phone,
        "emisor": sender_phone,
        "destinatario": recipient,
        "message": "Necesito ayuda",
        "location": None,
        "timestamp": "2024-03-01T10:00:00.000Z",
        "estado": "activa",
    }


def _put_legacy_alert(store, recipient=None):
    """Ana's summary S1 listing Beto inline, and Beto's copy R1 under a different id."""
    recipient = recipient or {"id": "u-beto", "nombre": "Beto", "telefono": BETO_PHONE}
    summary = _legacy_copy("S1", ANA_PHONE, "Ana")
    del summary["destinatario"]
    summary["destinatarios"] = [recipient]
    store.put_alert("u-ana", AlertBox.SENT, summary)
    store.put_alert("u-beto", AlertBox.RECEIVED, _legacy_copy("R1", ANA_PHONE, "Ana"))


# ═══════════════════════════════════════════════════════════════════════════
# Models
# ═══════════════════════════════════════════════════════════════════════════

class TestRegisteredUser:

    def test_from_document(self):
        user = RegisteredUser.from_document(
            "u1", {"telefono": BETO_PHONE, "nombre": "Beto", "fcmToken": "tok"},
        )
        assert user.phone == BETO_PHONE
        assert user.name == "Beto"
        assert user.fcm_token == "tok"

    def test_non_string_token_ignored(self):
        user = RegisteredUser.from_document("u1", {"telefono": BETO_PHONE, "fcmToken": 123})
        assert user.fcm_token is None

    def test_display_name_falls_back_to_phone(self):
        user = RegisteredUser.from_document("u1", {"telefono": BETO_PHONE})
        assert user.display_name == BETO_PHONE
        assert user.descriptor().to_dict() == {
            "id": "u1", "nombre": BETO_PHONE, "telefono": BETO_PHONE,
        }


class TestAlertFanout:

    def test_refs_cover_sender_and_recipients(self):
        fanout = AlertFanout(
            alert_id="a1",
            sender_user_id="u-ana",
            sender_summary={"emisor": ANA_PHONE, "timestamp": "t"},
            recipient_copies={"u-beto": {}, "u-carla": {}},
        )
        assert fanout.refs == [
            AlertRef("u-ana", AlertBox.SENT),
            AlertRef("u-beto", AlertBox.RECEIVED),
            AlertRef("u-carla", AlertBox.RECEIVED),
        ]
        assert fanout.write_count == 4
        entry = fanout.index_entry()
        assert entry["id"] == "a1"
        assert entry["refs"][0] == {"userId": "u-ana", "coleccion": "alertas_enviadas"}

    def test_alert_ref_round_trip(self):
        ref = AlertRef("u1", AlertBox.RECEIVED)
        assert AlertRef.from_dict(ref.to_dict()) == ref


# ═══════════════════════════════════════════════════════════════════════════
# Builder
# ═══════════════════════════════════════════════════════════════════════════

class TestAlertDraft:

    def test_recipient_copy_fields(self):
        draft = AlertDraft(sender_name="Ana", sender_phone=ANA_PHONE, message="Hola", location={"lat": 1})
        doc = draft.recipient_copy(BETO_PHONE)
        assert doc["id"] == draft.alert_id
        assert doc["senderPhone"] == doc["emisor"] == ANA_PHONE
        assert doc["destinatario"] == BETO_PHONE
        assert doc["estado"] == "activa"
        assert doc["location"] == {"lat": 1}
        assert "destinatarios" not in doc

    def test_sender_summary_lists_recipients(self):
        draft = AlertDraft(sender_name="Ana", sender_phone=ANA_PHONE)
        doc = draft.sender_summary([RecipientDescriptor("u-beto", "Beto", BETO_PHONE)])
        assert doc["destinatarios"] == [{"id": "u-beto", "nombre": "Beto", "telefono": BETO_PHONE}]
        assert "destinatario" not in doc

    def test_copies_share_identity_and_timestamp(self):
        draft = AlertDraft(sender_name="Ana", sender_phone=ANA_PHONE)
        a = draft.recipient_copy(BETO_PHONE)
        b = draft.sender_summary([])
        assert a["id"] == b["id"]
        assert a["timestamp"] == b["timestamp"]

    def test_utc_timestamp_format(self):
        ts = utc_timestamp(datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc))
        assert ts == "2024-05-01T12:30:00.000Z"


# ═══════════════════════════════════════════════════════════════════════════
# Creation
# ═══════════════════════════════════════════════════════════════════════════

class TestCreateAlert:

    def test_end_to_end_scenario(self):
        store = _make_store()
        notifier = RecordingNotifier()
        service = _make_service(store, notifier)

        result = _send(service, ["56912345679", "000"])

        assert result.to_dict()["registrados"] == 1
        assert result.to_dict()["noRegistrados"] == 1
        assert result.to_dict()["detalles"] == [
            {"id": "u-beto", "nombre": "Beto", "telefono": BETO_PHONE},
        ]

        copy = store.get_alert("u-beto", AlertBox.RECEIVED, result.alert_id)
        assert copy is not None
        assert copy["estado"] == "activa"
        assert copy["destinatario"] == BETO_PHONE

        assert len(notifier.sent) == 1
        token, notice = notifier.sent[0]
        assert token == "tok-beto"
        assert notice.alert_id == result.alert_id
        assert notice.title == "🚨 Alerta de Ana"

    def test_sender_summary_written(self):
        store = _make_store()
        result = _send(_make_service(store), [BETO_PHONE, CARLA_PHONE])

        summary = store.get_alert("u-ana", AlertBox.SENT, result.alert_id)
        assert summary["estado"] == "activa"
        assert [d["nombre"] for d in summary["destinatarios"]] == ["Beto", "Carla"]

    def test_counts_add_up_to_contact_count(self):
        contacts = [BETO_PHONE, "+56 9 8765 4321", "911111111", "12345", "812345678"]
        result = _send(_make_service(), contacts)
        d = result.to_dict()
        assert d["registrados"] + d["noRegistrados"] == len(contacts)
        assert len(d["detalles"]) == d["registrados"] == 2

    def test_no_push_without_token(self):
        notifier = RecordingNotifier()
        result = _send(_make_service(notifier=notifier), [CARLA_PHONE])
        assert result.to_dict()["registrados"] == 1
        assert notifier.sent == []
        assert result.pushes == []

    def test_push_failure_does_not_fail_request(self):
        store = _make_store()
        notifier = RecordingNotifier(failing_tokens={"tok-beto"})
        result = _send(_make_service(store, notifier), [BETO_PHONE])

        assert result.to_dict()["registrados"] == 1
        assert result.pushes[0].status == PushStatus.FAILED
        assert store.get_alert("u-beto", AlertBox.RECEIVED, result.alert_id) is not None

    def test_credential_failure_on_first_push_still_reaches_second(self):
        store = _make_store()
        store.add_user("u-dora", DORA_PHONE, "Dora", fcm_token="tok-dora")
        service = AlertService(store, FcmNotifier(MagicMock()))

        side_effect = [RefreshError("invalid_grant"), "projects/p/messages/2"]
        with patch("firebase_admin.messaging.send", side_effect=side_effect) as send:
            result = _send(service, [BETO_PHONE, DORA_PHONE])

        assert send.call_count == 2
        assert [send.call_args_list[i].args[0].token for i in (0, 1)] == ["tok-beto", "tok-dora"]
        assert [p.status for p in result.pushes] == [PushStatus.FAILED, PushStatus.DELIVERED]
        assert result.to_dict()["success"] is True
        assert result.to_dict()["registrados"] == 2

    def test_no_registered_contacts_writes_nothing(self):
        store = _make_store()
        result = _send(_make_service(store), ["000", "911111111"])

        d = result.to_dict()
        assert d["registrados"] == 0
        assert d["noRegistrados"] == 2
        assert d["alertaId"] is None
        assert store.list_alerts("u-ana", AlertBox.SENT) == []

    def test_empty_contact_list(self):
        result = _send(_make_service(), [])
        assert result.to_dict()["registrados"] == 0
        assert result.to_dict()["noRegistrados"] == 0

    def test_duplicate_contact_counted_twice_pushed_once(self):
        store = _make_store()
        notifier = RecordingNotifier()
        result = _send(_make_service(store, notifier), [BETO_PHONE, "+56 9 1234 5679"])

        assert result.to_dict()["registrados"] == 2
        assert len(notifier.sent) == 1
        assert len(store.list_alerts("u-beto", AlertBox.RECEIVED)) == 1
        summary = store.get_alert("u-ana", AlertBox.SENT, result.alert_id)
        assert len(summary["destinatarios"]) == 1

    def test_missing_contacts_rejected(self):
        with pytest.raises(InvalidContactsError):
            _send(_make_service(), None)

    def test_string_contacts_rejected(self):
        with pytest.raises(InvalidContactsError):
            _send(_make_service(), BETO_PHONE)

    def test_invalid_sender_rejected(self):
        with pytest.raises(InvalidPhoneError) as exc:
            _send(_make_service(), [BETO_PHONE], sender="12345")
        assert exc.value.status_code == 400
        assert exc.value.message == "Número del remitente inválido."

    @pytest.mark.parametrize("contacts", [[], [BETO_PHONE], ["000", CARLA_PHONE]])
    def test_unregistered_sender_rejected(self, contacts):
        with pytest.raises(SenderNotRegisteredError) as exc:
            _send(_make_service(), contacts, sender="911111111")
        assert exc.value.status_code == 403

    def test_blank_sender_name_uses_directory_name(self):
        notifier = RecordingNotifier()
        _send(_make_service(notifier=notifier), [BETO_PHONE], sender_name="  ")
        assert notifier.sent[0][1].sender_name == "Ana"

    def test_sender_phone_normalized_in_records(self):
        store = _make_store()
        result = _send(_make_service(store), [BETO_PHONE], sender="+56 9 1234 5678")
        copy = store.get_alert("u-beto", AlertBox.RECEIVED, result.alert_id)
        assert copy["senderPhone"] == ANA_PHONE


# ═══════════════════════════════════════════════════════════════════════════
# Listing
# ═══════════════════════════════════════════════════════════════════════════

class TestListAlerts:

    def test_empty_boxes(self):
        listing = _make_service().list_alerts(BETO_PHONE)
        assert listing.to_dict() == {
            "success": True, "telefono": BETO_PHONE, "recibidas": [], "enviadas": [],
        }

    def test_received_and_sent(self):
        service = _make_service()
        result = _send(service, [BETO_PHONE])

        beto = service.list_alerts("+56912345679")
        assert [a["id"] for a in beto.received] == [result.alert_id]
        assert beto.sent == []

        ana = service.list_alerts(ANA_PHONE)
        assert [a["id"] for a in ana.sent] == [result.alert_id]

    def test_newest_first(self):
        store = _make_store()
        store.put_alert("u-beto", AlertBox.RECEIVED, {"id": "old", "timestamp": "2024-01-01T00:00:00.000Z"})
        store.put_alert("u-beto", AlertBox.RECEIVED, {"id": "new", "timestamp": "2024-06-01T00:00:00.000Z"})
        listing = _make_service(store).list_alerts(BETO_PHONE)
        assert [a["id"] for a in listing.received] == ["new", "old"]

    def test_invalid_phone(self):
        with pytest.raises(InvalidPhoneError):
            _make_service().list_alerts("12345")

    def test_unknown_user(self):
        with pytest.raises(UserNotFoundError) as exc:
            _make_service().list_alerts("911111111")
        assert exc.value.status_code == 404


# ═══════════════════════════════════════════════════════════════════════════
# Finalization
# ═══════════════════════════════════════════════════════════════════════════

class TestFinalizeAlert:

    def test_finishes_every_copy(self):
        store = _make_store()
        service = _make_service(store)
        result = _send(service, [BETO_PHONE, CARLA_PHONE])

        assert service.finalize_alert(result.alert_id) == 3
        for user_id, box in [("u-ana", AlertBox.SENT), ("u-beto", AlertBox.RECEIVED),
                             ("u-carla", AlertBox.RECEIVED)]:
            assert store.get_alert(user_id, box, result.alert_id)["estado"] == "finalizada"

    def test_finalize_twice_succeeds(self):
        store = _make_store()
        service = _make_service(store)
        result = _send(service, [BETO_PHONE])

        service.finalize_alert(result.alert_id)
        assert service.finalize_alert(result.alert_id) == 2
        assert store.get_alert("u-beto", AlertBox.RECEIVED, result.alert_id)["estado"] == "finalizada"

    def test_unknown_alert(self):
        with pytest.raises(AlertNotFoundError) as exc:
            _make_service().finalize_alert("no-such-alert")
        assert exc.value.status_code == 404

    def test_unrelated_alerts_untouched(self):
        store = _make_store()
        service = _make_service(store)
        first = _send(service, [BETO_PHONE])
        second = _send(service, [BETO_PHONE])

        service.finalize_alert(first.alert_id)
        assert store.get_alert("u-beto", AlertBox.RECEIVED, second.alert_id)["estado"] == "activa"

    def test_legacy_copy_found_by_scan(self):
        store = _make_store()
        store.put_alert("u-beto", AlertBox.RECEIVED, {"id": "legacy-1", "estado": "activa"})
        assert _make_service(store).finalize_alert("legacy-1") == 1
        assert store.get_alert("u-beto", AlertBox.RECEIVED, "legacy-1")["estado"] == "finalizada"

    def test_legacy_scan_disabled(self):
        store = InMemoryAlertStore(legacy_scan=False)
        store.add_user("u-beto", BETO_PHONE, "Beto")
        store.put_alert("u-beto", AlertBox.RECEIVED, {"id": "legacy-1", "estado": "activa"})
        with pytest.raises(AlertNotFoundError):
            _make_service(store).finalize_alert("legacy-1")

    def test_legacy_summary_finishes_inline_recipients(self):
        store = _make_store()
        _put_legacy_alert(store)
        store.put_alert("u-beto", AlertBox.RECEIVED, _legacy_copy("R2", CARLA_PHONE, "Carla"))

        assert _make_service(store).finalize_alert("S1") == 2
        assert store.get_alert("u-ana", AlertBox.SENT, "S1")["estado"] == "finalizada"
        assert store.get_alert("u-beto", AlertBox.RECEIVED, "R1")["estado"] == "finalizada"
        assert store.get_alert("u-beto", AlertBox.RECEIVED, "R2")["estado"] == "activa"

    def test_legacy_recipient_resolved_by_phone(self):
        store = _make_store()
        _put_legacy_alert(store, recipient={"nombre": "Beto", "telefono": "+56 9 1234 5679"})

        assert _make_service(store).finalize_alert("S1") == 2
        assert store.get_alert("u-beto", AlertBox.RECEIVED, "R1")["estado"] == "finalizada"

    def test_legacy_recipient_copy_already_finished(self):
        store = _make_store()
        _put_legacy_alert(store)
        service = _make_service(store)

        service.finalize_alert("S1")
        assert service.finalize_alert("S1") == 1

    def test_indexed_alert_skips_inline_lookup(self):
        store = _make_store()
        store.put_alert("u-beto", AlertBox.RECEIVED, _legacy_copy("R1", ANA_PHONE, "Ana"))
        service = _make_service(store)
        result = _send(service, [BETO_PHONE])

        assert service.finalize_alert(result.alert_id) == 2
        assert store.get_alert("u-beto", AlertBox.RECEIVED, "R1")["estado"] == "activa"

    def test_unexpected_error_reported_as_finalize_error(self):
        class FaultyStore(InMemoryAlertStore):
            def set_status(self, ref, alert_id, status):
                raise RuntimeError("unexpected payload")

        store = FaultyStore()
        store.add_user("u-beto", BETO_PHONE, "Beto")
        store.put_alert("u-beto", AlertBox.RECEIVED, {"id": "a1", "estado": "activa"})

        with pytest.raises(AlertFinalizationError) as exc:
            _make_service(store).finalize_alert("a1")
        assert exc.value.status_code == 500
        assert exc.value.message == "❌ Error al finalizar alerta."

    def test_store_failure_reported_as_finalize_error(self):
        class BrokenStore(InMemoryAlertStore):
            def locate_alert(self, alert_id):
                raise StoreError("locate_alert", "deadline exceeded")

        with pytest.raises(AlertFinalizationError) as exc:
            _make_service(BrokenStore()).finalize_alert("a1")
        assert exc.value.status_code == 500

    def test_status_only_moves_forward(self):
        assert [s.value for s in AlertStatus] == ["activa", "finalizada"]
