# API Token Manager: create, verify, revoke, list.
# Created: 2026-03-02
#
# Tokens use the format st_<16 hex>.<secret> so the id half can be used for
# lookup and shown in the UI. Only the sha256 of the secret half is stored;
# the plaintext is shown once at creation.
# Storage: <data dir>/api_tokens.json

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import secrets
import threading
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Literal

from pydantic import BaseModel

logger = logging.getLogger(__name__)

Permission = Literal["read", "write", "admin"]

_PREFIX = "st_"
PERMISSIONS: tuple[str, ...] = ("read", "write", "admin")

# last_used_at is rewritten at most this often per token
LAST_USED_RESOLUTION = timedelta(minutes=1)


class ApiTokenRecord(BaseModel):
    """Stored API token record (no plaintext)."""

    id: str
    name: str
    token_hash: str
    organization_id: str
    user_id: str
    permissions: Permission
    created_at: datetime
    expires_at: datetime | None = None
    last_used_at: datetime | None = None
    revoked_at: datetime | None = None

    @property
    def revoked(self) -> bool:
        return self.revoked_at is not None

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at is not None and self.expires_at < (now or datetime.now(UTC))


def _hash_secret(secret: str) -> str:
    return hashlib.sha256(secret.encode()).hexdigest()


def parse_token(token: str) -> tuple[str, str] | None:
    """Split ``st_<id>.<secret>`` into (id, secret); None if malformed."""
    if not token:
        return None
    token_id, sep, secret = token.partition(".")
    if not sep or not token_id.startswith(_PREFIX) or not secret:
        return None
    return token_id, secret


class ApiTokenManager:
    """Manages API tokens with file-based persistence."""

    def __init__(self, storage_path: Path | None = None):
        if storage_path is None:
            from casebook.config import get_settings

            storage_path = get_settings().resolved_data_dir() / "api_tokens.json"
        self._path = storage_path
        self._lock = threading.Lock()

    def _load(self) -> list[ApiTokenRecord]:
        if not self._path.exists():
            return []
        try:
            return [ApiTokenRecord(**r) for r in json.loads(self._path.read_text())]
        except (json.JSONDecodeError, OSError, TypeError, ValueError) as exc:
            logger.warning("Failed to load API tokens from %s: %s", self._path, exc)
            return []

    def _save(self, records: list[ApiTokenRecord]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(".tmp")
        tmp.write_text(json.dumps([r.model_dump(mode="json") for r in records], indent=2))
        # Restrict permissions
        try:
            tmp.chmod(0o600)
        except OSError:
            pass
        tmp.replace(self._path)

    def create(
        self,
        name: str,
        organization_id: str,
        user_id: str,
        permissions: str = "read",
        expires_in_days: int | None = None,
    ) -> tuple[ApiTokenRecord, str]:
        """Create a new API token. Returns (record, plaintext_token).

        The plaintext is returned only once; it cannot be retrieved later.
        """
        if permissions not in PERMISSIONS:
            raise ValueError(f"Invalid permissions: {permissions}")
        if expires_in_days is not None and expires_in_days <= 0:
            raise ValueError("expires_in_days must be positive")

        token_id = f"{_PREFIX}{secrets.token_hex(8)}"
        secret = secrets.token_urlsafe(32)
        now = datetime.now(UTC)

        record = ApiTokenRecord(
            id=token_id,
            name=name,
            token_hash=_hash_secret(secret),
            organization_id=organization_id,
            user_id=user_id,
            permissions=permissions,
            created_at=now,
            expires_at=now + timedelta(days=expires_in_days) if expires_in_days else None,
        )

        with self._lock:
            records = self._load()
            records.append(record)
            self._save(records)

        self._audit(
            "api_token_created",
            record,
            token_name=name,
            permissions=permissions,
        )
        return record, f"{token_id}.{secret}"

    def verify(self, token: str) -> ApiTokenRecord | None:
        """Verify an API token. Returns the record if valid, None otherwise."""
        parsed = parse_token(token)
        if parsed is None:
            return None
        token_id, secret = parsed
        secret_hash = _hash_secret(secret)

        with self._lock:
            records = self._load()
            for rec in records:
                if rec.id != token_id:
                    continue
                if not hmac.compare_digest(rec.token_hash, secret_hash):
                    return None
                if rec.revoked or rec.is_expired():
                    return None

                now = datetime.now(UTC)
                if rec.last_used_at is not None and now - rec.last_used_at < LAST_USED_RESOLUTION:
                    return rec
                rec.last_used_at = now
                try:
                    self._save(records)
                except OSError as exc:
                    # Usage tracking must not fail an otherwise valid request
                    logger.warning("Could not record API token use for %s: %s", rec.id, exc)
                return rec
        return None

    def revoke(self, token_id: str, organization_id: str) -> bool:
        """Revoke a token owned by *organization_id*. True if found and revoked."""
        with self._lock:
            records = self._load()
            for rec in records:
                if rec.id == token_id and rec.organization_id == organization_id:
                    if rec.revoked:
                        return False
                    rec.revoked_at = datetime.now(UTC)
                    self._save(records)
                    break
            else:
                return False

        self._audit("api_token_revoked", rec, token_name=rec.name)
        return True

    def list_tokens(self, organization_id: str) -> list[ApiTokenRecord]:
        """List an organization's tokens (no secrets exposed)."""
        with self._lock:
            return [r for r in self._load() if r.organization_id == organization_id]

    def get(self, token_id: str, organization_id: str) -> ApiTokenRecord | None:
        with self._lock:
            for rec in self._load():
                if rec.id == token_id and rec.organization_id == organization_id:
                    return rec
        return None

    @staticmethod
    def _audit(action: str, record: ApiTokenRecord, **context) -> None:
        from casebook.security.audit import AuditSeverity, get_audit_logger

        severity = AuditSeverity.WARNING if action.endswith("revoked") else AuditSeverity.INFO
        get_audit_logger().log_api_event(
            action=action,
            target=f"token:{record.id}",
            actor=record.user_id,
            organization_id=record.organization_id,
            severity=severity,
            **context,
        )


# Singleton
_manager: ApiTokenManager | None = None


def get_api_token_manager() -> ApiTokenManager:
    global _manager
    if _manager is None:
        _manager = ApiTokenManager()
    return _manager


def reset_api_token_manager() -> None:
    """Reset singleton (for testing)."""
    global _manager
    _manager = None
