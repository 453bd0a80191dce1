"""
Environment configuration — single source of truth for all settings.

Uses pydantic-settings for type-safe config with .env file support.
All values have sensible defaults for local development: the in-memory
store and the simulated push provider, so the service boots without
Firebase credentials.

Usage:
    from panic_relay.app.core.config import settings
    print(settings.STORE_BACKEND)
"""

from __future__ import annotations

import json
from functools import lru_cache
from typing import Any, Dict, List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application-wide settings loaded from environment variables or .env file.

    Precedence: env var > .env file > default value
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ── Application ──
    APP_NAME: str = "Panic Relay"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development | staging | production
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"  # DEBUG | INFO | WARNING | ERROR | CRITICAL

    # ── Server ──
    HOST: str = "0.0.0.0"
    PORT: int = 3000
    RELOAD: bool = False

    # ── CORS ──
    CORS_ORIGINS: List[str] = ["http://localhost:3000"]
    CORS_ALLOW_ALL: bool = True

    # ── Storage ──
    STORE_BACKEND: str = "memory"  # memory | firestore
    USERS_COLLECTION: str = "usuarios"
    ALERT_INDEX_COLLECTION: str = "alertas_index"
    FINALIZE_LEGACY_SCAN: bool = True  # scan all users when an alert has no index entry
    MEMORY_SEED_PATH: Optional[str] = None  # JSON list of users for the memory store

    # ── Push notifications ──
    PUSH_PROVIDER: str = "simulation"  # simulation | fcm

    # ── Firebase credentials ──
    FIREBASE_SERVICE_ACCOUNT: Optional[str] = None  # full service-account JSON
    FIREBASE_PROJECT_ID: Optional[str] = None
    FIREBASE_CLIENT_EMAIL: Optional[str] = None
    FIREBASE_PRIVATE_KEY: Optional[str] = None

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def uses_firebase(self) -> bool:
        return self.STORE_BACKEND == "firestore" or self.PUSH_PROVIDER == "fcm"

    def firebase_service_account(self) -> Optional[Dict[str, Any]]:
        """
        Service-account info from the environment, or None when the
        application-default credentials should be used instead.

        Private keys passed through env vars usually carry escaped
        newlines; they are restored here.
        """
        if self.FIREBASE_SERVICE_ACCOUNT:
            info = json.loads(self.FIREBASE_SERVICE_ACCOUNT)
        elif self.FIREBASE_PRIVATE_KEY and self.FIREBASE_CLIENT_EMAIL:
            info = {
                "type": "service_account",
                "project_id": self.FIREBASE_PROJECT_ID,
                "client_email": self.FIREBASE_CLIENT_EMAIL,
                "private_key": self.FIREBASE_PRIVATE_KEY,
                "token_uri": "https://oauth2.googleapis.com/token",
            }
        else:
            return None

        if "private_key" in info and info["private_key"]:
            info["private_key"] = info["private_key"].replace("\\n", "\n")
        return info


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()


settings = get_settings()
