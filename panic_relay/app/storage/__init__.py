"""
storage — User directory and alert persistence.

Backends:
    firestore_store — Cloud Firestore (production)
    memory_store    — process-local dicts (development, tests)
"""

from __future__ import annotations

import logging

from panic_relay.app.core.config import Settings
from panic_relay.app.storage.base import AlertStore
from panic_relay.app.storage.memory_store import InMemoryAlertStore

logger = logging.getLogger(__name__)


def build_store(cfg: Settings, firebase_app=None) -> AlertStore:
    """Construct the store selected by STORE_BACKEND."""
    backend = cfg.STORE_BACKEND.lower()

    if backend == "firestore":
        from panic_relay.app.core.firebase import firestore_client
        from panic_relay.app.storage.firestore_store import FirestoreAlertStore

        if firebase_app is None:
            raise ValueError("STORE_BACKEND=firestore requires an initialised Firebase app")
        logger.info("Using Firestore store (users=%s, index=%s)", cfg.USERS_COLLECTION, cfg.ALERT_INDEX_COLLECTION)
        return FirestoreAlertStore(
            firestore_client(firebase_app),
            users_collection=cfg.USERS_COLLECTION,
            index_collection=cfg.ALERT_INDEX_COLLECTION,
            legacy_scan=cfg.FINALIZE_LEGACY_SCAN,
        )

    if backend == "memory":
        store = InMemoryAlertStore(legacy_scan=cfg.FINALIZE_LEGACY_SCAN)
        logger.warning("Using in-memory store — alerts are lost on restart")
        if cfg.MEMORY_SEED_PATH:
            store.load_seed(cfg.MEMORY_SEED_PATH)
        return store

    raise ValueError(f"Unknown STORE_BACKEND '{cfg.STORE_BACKEND}'. Must be one of: ['firestore', 'memory']")


__all__ = ["AlertStore", "InMemoryAlertStore", "build_store"]
