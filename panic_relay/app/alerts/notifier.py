"""
notifier.py — Push notification delivery (Firebase Cloud Messaging).

Delivery is best-effort:
    • exactly one attempt per recipient, no retry
    • failures are logged and returned as a PushResult, never raised
    • an alert is already stored before any push is attempted, so the
      recipient still sees it in the app if the push is lost

The FCM message carries both a notification block (shown by the OS when
the app is in background) and a data block the Flutter client uses to
open the alert screen.

SimulatedNotifier logs instead of sending and is the development default.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional

from panic_relay.app.alerts.models import PushResult, PushStatus, RegisteredUser

logger = logging.getLogger(__name__)

DEFAULT_BODY = "¡Tienes una nueva alerta!"
CLICK_ACTION = "FLUTTER_NOTIFICATION_CLICK"
APNS_CATEGORY = "RESPONDER_ALERTA"


@dataclass(frozen=True)
class PushNotice:
    """What a recipient's device is told about a new alert."""
    alert_id: str
    sender_name: str
    sender_phone: str
    message: Optional[str] = None

    @property
    def title(self) -> str:
        return f"🚨 Alerta de {self.sender_name}"

    @property
    def body(self) -> str:
        return self.message or DEFAULT_BODY

    def data(self) -> Dict[str, str]:
        # FCM data values must be strings
        return {
            "alertaId": self.alert_id,
            "senderPhone": self.sender_phone,
            "click_action": CLICK_ACTION,
        }


class Notifier(ABC):
    name: str = "notifier"

    def notify(self, recipient: RegisteredUser, notice: PushNotice) -> Optional[PushResult]:
        """Push to ``recipient`` if it has a token; None when there is nothing to send to."""
        if not recipient.fcm_token:
            logger.debug("Recipient %s has no push token", recipient.user_id)
            return None
        result = self.send(recipient.fcm_token, notice, recipient_id=recipient.user_id)
        if result.ok:
            logger.info(
                "Push %s for alert %s → %s",
                result.status.value, notice.alert_id, recipient.display_name,
                extra={"alert_id": notice.alert_id, "push_status": result.status.value},
            )
        else:
            logger.error(
                "Push failed for alert %s → %s: %s",
                notice.alert_id, recipient.display_name, result.error_message,
                extra={"alert_id": notice.alert_id, "push_status": result.status.value},
            )
        return result

    @abstractmethod
    def send(self, token: str, notice: PushNotice, *, recipient_id: str = "") -> PushResult:
        """One delivery attempt. Must not raise for delivery problems."""


class FcmNotifier(Notifier):
    """Sends through firebase_admin.messaging using an explicit app."""

    name = "fcm"

    def __init__(self, app=None):
        self._app = app

    @staticmethod
    def build_message(token: str, notice: PushNotice):
        from firebase_admin import messaging

        return messaging.Message(
            token=token,
            notification=messaging.Notification(title=notice.title, body=notice.body),
            data=notice.data(),
            android=messaging.AndroidConfig(
                priority="high",
                notification=messaging.AndroidNotification(
                    sound="default",
                    click_action=CLICK_ACTION,
                ),
            ),
            apns=messaging.APNSConfig(
                payload=messaging.APNSPayload(
                    aps=messaging.Aps(
                        alert=messaging.ApsAlert(title=notice.title, body=notice.body),
                        sound="default",
                        category=APNS_CATEGORY,
                    ),
                ),
            ),
        )

    def send(self, token: str, notice: PushNotice, *, recipient_id: str = "") -> PushResult:
        from firebase_admin import messaging

        try:
            message_id = messaging.send(self.build_message(token, notice), app=self._app)
        except Exception as exc:
            # FirebaseError, ValueError, or google.auth RefreshError/TransportError
            # when the service-account credentials cannot be refreshed.
            return PushResult(
                user_id=recipient_id,
                status=PushStatus.FAILED,
                error_message=f"{type(exc).__name__}: {exc}",
            )
        return PushResult(user_id=recipient_id, status=PushStatus.DELIVERED, message_id=message_id)


class SimulatedNotifier(Notifier):
    """Logs the notification instead of sending it."""

    name = "simulation"

    def send(self, token: str, notice: PushNotice, *, recipient_id: str = "") -> PushResult:
        logger.info(
            "[PUSH-SIM] %s | %s | token=%s...",
            notice.title, notice.body, token[:12],
        )
        return PushResult(
            user_id=recipient_id,
            status=PushStatus.SIMULATED,
            message_id=f"simulated/{notice.alert_id}/{recipient_id}",
        )


def build_notifier(provider: str, firebase_app=None) -> Notifier:
    provider = provider.lower()
    if provider == "fcm":
        if firebase_app is None:
            raise ValueError("PUSH_PROVIDER=fcm requires an initialised Firebase app")
        return FcmNotifier(firebase_app)
    if provider == "simulation":
        return SimulatedNotifier()
    raise ValueError(f"Unknown PUSH_PROVIDER '{provider}'. Must be one of: ['fcm', 'simulation']")
