"""Application settings loaded from environment variables."""

from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Basal profile engine configuration."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    # Server
    # Default to loopback: the server can trigger profile pushes to an insulin pump.
    basalsync_host: str = "127.0.0.1"
    basalsync_port: int = 8011
    basalsync_log_level: str = "info"
    # Refuse non-loopback binds unless explicitly allowed (there is no auth layer).
    basalsync_allow_insecure_bind: bool = False

    # Profile source
    profile_store_path: str = ""
    profile_source_name: str = "local"
    units: Literal["mg/dl", "mmol"] = "mg/dl"

    # Storage (switch history + diagnostics)
    db_path: str = "~/.basalsync/profiles.db"
    # Comma-separated Fernet keys, newest first; empty keeps history in memory only.
    encryption_key: str = ""

    # Alerts and display
    alert_sound_id: str = "bolus_error"
    no_profile_label: str = "No profile selected"
    failed_profile_update_title: str = "Failed to update basal profile"


def get_settings() -> Settings:
    """Create and return a Settings instance."""
    return Settings()
