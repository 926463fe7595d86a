"""
Environment configuration - single source of truth for all settings.

Uses pydantic-settings for type-safe config with .env file support.
All values have sensible defaults for local development: every delivery
channel starts in simulation / in-memory mode and email + SMS start disabled.

Usage:
    from backend.app.core.config import settings
    print(settings.EMAIL_PROVIDER)
"""

from __future__ import annotations

import json
from functools import lru_cache
from typing import Annotated, Any, List, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


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
    APP_NAME: str = "Kids in Motion Messaging"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development | staging | production
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"  # DEBUG | INFO | WARNING | ERROR | CRITICAL

    # ── Server ──
    HOST: str = "0.0.0.0"
    PORT: int = 8080
    RELOAD: bool = True

    # ── CORS ──
    CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
        "http://localhost:8080",
    ]
    CORS_ALLOW_ALL: bool = False

    # ── Organisation / admin ──
    ORGANIZATION_NAME: str = "Kids in Motion"
    DEFAULT_SENDER_LABEL: str = "Kids in Motion Admin"
    # Comma-separated or a JSON list: "a@x.org,b@x.org" / '["a@x.org"]'
    ADMIN_EMAILS: Annotated[List[str], NoDecode] = []
    BROADCAST_HISTORY_MAX: int = 500

    # ── Inbox (in-app messages) ──
    INBOX_PROVIDER: str = "memory"  # memory | firestore
    INBOX_COLLECTION: str = "messages"
    FIREBASE_CREDENTIALS_PATH: Optional[str] = None
    FIREBASE_PROJECT_ID: Optional[str] = None

    # ── Email ──
    EMAIL_ENABLED: bool = False
    EMAIL_PROVIDER: str = "simulation"  # simulation | smtp
    EMAIL_FROM: str = "noreply@kidsinmotionpa.org"
    EMAIL_FROM_NAME: str = "Kids in Motion Team"
    SMTP_HOST: Optional[str] = None
    SMTP_PORT: int = 587
    SMTP_USER: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    SMTP_USE_TLS: bool = True
    SMTP_USE_SSL: bool = False
    SMTP_TIMEOUT: float = 10.0

    # ── SMS ──
    SMS_ENABLED: bool = False
    SMS_PROVIDER: str = "simulation"  # simulation | twilio
    TWILIO_ACCOUNT_SID: Optional[str] = None
    TWILIO_AUTH_TOKEN: Optional[str] = None
    TWILIO_FROM_NUMBER: Optional[str] = None
    TWILIO_API_BASE_URL: str = "https://api.twilio.com/2010-04-01"
    SMS_TIMEOUT_SECONDS: float = 15.0
    SMS_MAX_LENGTH: int = 320

    @field_validator("ADMIN_EMAILS", mode="before")
    @classmethod
    def _split_admin_emails(cls, value: Any) -> Any:
        if not isinstance(value, str):
            return value
        text = value.strip()
        if text.startswith("["):
            return json.loads(text)
        return [part.strip() for part in text.split(",") if part.strip()]

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings singleton."""
    return Settings()


settings = get_settings()
