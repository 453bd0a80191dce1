"""
Firebase Admin initialisation.

The Firebase app is created once at startup (see ``main.lifespan``) and
handed to the Firestore store and the FCM notifier. Nothing else in the
code base calls ``firebase_admin`` globals directly.

Credentials, in order of preference:
    1. FIREBASE_SERVICE_ACCOUNT  — full service-account JSON
    2. FIREBASE_PROJECT_ID / FIREBASE_CLIENT_EMAIL / FIREBASE_PRIVATE_KEY
    3. Application-default credentials (GOOGLE_APPLICATION_CREDENTIALS, GCE metadata)
"""

from __future__ import annotations

import logging
from typing import Optional

import firebase_admin
from firebase_admin import credentials, firestore

from panic_relay.app.core.config import Settings

logger = logging.getLogger(__name__)

APP_NAME = "panic-relay"


def init_firebase(cfg: Settings) -> firebase_admin.App:
    """Create (or reuse) the named Firebase app for this process."""
    try:
        return firebase_admin.get_app(APP_NAME)
    except ValueError:
        pass

    info = cfg.firebase_service_account()
    if info is not None:
        cred = credentials.Certificate(info)
        source = "service account"
    else:
        cred = credentials.ApplicationDefault()
        source = "application default credentials"

    options = {"projectId": cfg.FIREBASE_PROJECT_ID} if cfg.FIREBASE_PROJECT_ID else None
    app = firebase_admin.initialize_app(cred, options, name=APP_NAME)
    logger.info("Firebase initialised from %s (project=%s)", source, app.project_id)
    return app


def firestore_client(app: firebase_admin.App):
    return firestore.client(app)


def close_firebase(app: Optional[firebase_admin.App]) -> None:
    if app is not None:
        firebase_admin.delete_app(app)
        logger.info("Firebase app released")
