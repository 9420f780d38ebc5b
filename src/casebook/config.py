# Casebook configuration.
# Created: 2026-03-02
#
# Settings come from CASEBOOK_* environment variables (or a .env file).
# The HMAC signing key is generated once and kept in the config dir when
# CASEBOOK_SECRET_KEY is not set, so signed sessions survive restarts.

from __future__ import annotations

import logging
import os
import secrets
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

_SECRET_FILE = "secret_key"


def get_config_dir() -> Path:
    """Return (and create) the directory holding persisted state."""
    override = os.environ.get("CASEBOOK_CONFIG_DIR")
    path = Path(override) if override else Path.home() / ".casebook"
    path.mkdir(parents=True, exist_ok=True)
    return path


def _load_or_create_secret(config_dir: Path) -> str:
    path = config_dir / _SECRET_FILE
    if path.exists():
        value = path.read_text().strip()
        if value:
            return value
    value = secrets.token_urlsafe(48)
    path.write_text(value)
    try:
        path.chmod(0o600)
    except OSError:
        pass
    logger.info("Generated new signing key at %s", path)
    return value


class Settings(BaseSettings):
    """Runtime settings for the authorization server."""

    model_config = SettingsConfigDict(
        env_prefix="CASEBOOK_",
        env_file=".env",
        extra="ignore",
    )

    # Signing
    secret_key: str = ""

    # Public URL used for issuer / redirect construction. Derived from the
    # Host header when empty.
    public_base_url: str = ""
    data_dir: Path | None = None

    # Lifetimes
    access_token_ttl_seconds: int = Field(default=3600, gt=0)
    refresh_token_ttl_seconds: int = Field(default=86400 * 30, gt=0)
    auth_code_ttl_seconds: int = Field(default=600, gt=0)
    pending_auth_ttl_seconds: int = Field(default=900, gt=0)
    session_ttl_hours: int = Field(default=24, gt=0)

    # Authorization behaviour
    strict_client_validation: bool = True
    oauth_default_permission: Literal["read", "write", "admin"] = "write"

    # Local development session (skips upstream login)
    dev_session: bool = False

    # Upstream identity provider (Linear)
    linear_client_id: str = ""
    linear_client_secret: str = ""
    upstream_timeout_seconds: float = Field(default=15.0, gt=0)
    upstream_max_attempts: int = Field(default=2, ge=1)

    # Server
    host: str = "127.0.0.1"
    port: int = 3000
    log_level: str = "INFO"

    @classmethod
    def load(cls) -> Settings:
        """Load settings from the environment, filling in the signing key."""
        settings = cls()
        if not settings.secret_key:
            settings.secret_key = _load_or_create_secret(get_config_dir())
        return settings

    def resolved_data_dir(self) -> Path:
        if self.data_dir is not None:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            return self.data_dir
        return get_config_dir()


@lru_cache
def get_settings() -> Settings:
    return Settings.load()
