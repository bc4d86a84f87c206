"""Application configuration management."""

import hashlib
import os
import secrets
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


# Fallback session secret when neither a secret nor an encryption key exists
_ephemeral_session_secret: Optional[str] = None


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_path: str = "/data/calsync.db"

    # Encryption (OAuth tokens are encrypted at rest)
    encryption_key_file: str = "/secrets/encryption.key"

    # Server
    public_url: str = "http://localhost:3000"
    log_level: str = "info"

    # Session
    session_secret_key: Optional[str] = None  # Derived from encryption key if not set
    session_expire_days: int = 7

    # Google OAuth
    google_client_id: str = ""
    google_client_secret: str = ""
    oauth_callback_path: str = "/auth/google/callback"

    # Rate limiting
    rate_limit_per_minute: int = 60

    # Background jobs
    sync_interval_minutes: int = 15
    token_refresh_minutes: int = 30

    # Retention
    sync_log_retention_days: int = 90
    past_event_retention_days: int = 30

    # Sync window
    default_sync_days: int = 30
    sync_lookback_days: int = 7
    token_expiry_buffer_minutes: int = 5

    # Availability
    slot_step_minutes: int = 30
    default_day_start_hour: int = 9
    default_day_end_hour: int = 17

    # Event mutations
    focus_block_color_id: str = "11"
    focus_block_prefix: str = "🎯"
    booking_email_reminder_minutes: int = 60
    booking_popup_reminder_minutes: int = 15

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def get_oauth_redirect_uri() -> str:
    """Absolute redirect URI registered with Google for the connect flow."""
    settings = get_settings()
    return settings.public_url.rstrip("/") + settings.oauth_callback_path


def get_encryption_key() -> bytes:
    """Load encryption key from file."""
    settings = get_settings()
    key_file = settings.encryption_key_file

    if not os.path.exists(key_file):
        raise RuntimeError(f"Encryption key file not found at {key_file}")

    with open(key_file, "rb") as f:
        key = f.read()
        # Only strip trailing newlines; binary keys may contain whitespace bytes
        while key and key[-1:] in (b"\n", b"\r"):
            key = key[:-1]

    if len(key) < 32:
        raise RuntimeError("Invalid encryption key: must be at least 32 bytes")

    return key


def get_session_secret() -> str:
    """Get session secret key, derived from encryption key if not set."""
    settings = get_settings()
    if settings.session_secret_key:
        return settings.session_secret_key

    try:
        key = get_encryption_key()
        return hashlib.sha256(key + b"session_secret").hexdigest()
    except RuntimeError:
        # No key on disk: sessions only survive for the life of the process
        global _ephemeral_session_secret
        if _ephemeral_session_secret is None:
            _ephemeral_session_secret = secrets.token_urlsafe(32)
        return _ephemeral_session_secret
