# OAuth2 credential storage: clients, authorization codes, token pairs.
# Created: 2026-03-02
#
# Clients and token pairs are persisted to a JSON file (mode 0600) when a
# path is given; authorization codes stay in memory (10 min TTL).
# All mutations go through one lock so that consuming a code and rotating a
# refresh token are atomic check-and-set operations.

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from dataclasses import asdict
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from casebook.api.oauth2.models import AuthorizationCode, OAuthToken, RegisteredClient

logger = logging.getLogger(__name__)

# Expired records are purged after this many token writes
CLEANUP_EVERY_WRITES = 100


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _serialize(record: Any) -> dict[str, Any]:
    data = asdict(record)
    for key, value in data.items():
        if isinstance(value, datetime):
            data[key] = value.isoformat()
    return data


class OAuthStorage:
    """Thread-safe OAuth2 credential store.

    Implements the ``ClientRepository`` protocol used by the client registry.
    With ``persist_path=None`` everything is kept in memory only.
    """

    def __init__(self, persist_path: Path | None = None):
        self._lock = threading.Lock()
        self._clients: dict[str, RegisteredClient] = {}
        self._codes: dict[str, AuthorizationCode] = {}
        self._tokens: dict[str, OAuthToken] = {}  # keyed by access_token_hash
        self._refresh_index: dict[str, str] = {}  # refresh_token_hash → access_token_hash
        self._persist_path = persist_path
        self._writes = 0
        self._load()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self) -> None:
        path = self._persist_path
        if path is None or not path.exists():
            return
        try:
            data = json.loads(path.read_text())
            for entry in data.get("clients", []):
                client = RegisteredClient(
                    client_id=entry["client_id"],
                    client_name=entry["client_name"],
                    redirect_uris=list(entry["redirect_uris"]),
                    grant_types=list(entry["grant_types"]),
                    response_types=list(entry["response_types"]),
                    token_endpoint_auth_method=entry.get("token_endpoint_auth_method", "none"),
                    created_at=_dt(entry.get("created_at")) or datetime.now(UTC),
                )
                self._clients[client.client_id] = client
            for entry in data.get("tokens", []):
                token = OAuthToken(
                    id=entry["id"],
                    access_token_hash=entry["access_token_hash"],
                    refresh_token_hash=entry["refresh_token_hash"],
                    client_id=entry["client_id"],
                    user_id=entry["user_id"],
                    organization_id=entry["organization_id"],
                    family_id=entry["family_id"],
                    expires_at=datetime.fromisoformat(entry["expires_at"]),
                    refresh_expires_at=datetime.fromisoformat(entry["refresh_expires_at"]),
                    scope=entry.get("scope"),
                    created_at=_dt(entry.get("created_at")) or datetime.now(UTC),
                    revoked_at=_dt(entry.get("revoked_at")),
                )
                self._tokens[token.access_token_hash] = token
                self._refresh_index[token.refresh_token_hash] = token.access_token_hash
            logger.debug(
                "Loaded %d clients and %d token pairs from %s",
                len(self._clients),
                len(self._tokens),
                path,
            )
        except (json.JSONDecodeError, OSError, KeyError, ValueError) as exc:
            logger.warning("Failed to load OAuth state from %s: %s", path, exc)

    def _save(self) -> None:
        """Write clients and tokens to disk. Caller holds the lock."""
        path = self._persist_path
        if path is None:
            return
        path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "clients": [_serialize(c) for c in self._clients.values()],
            "tokens": [_serialize(t) for t in self._tokens.values()],
        }
        tmp = path.with_suffix(".tmp")
        tmp.write_text(json.dumps(data, indent=2))
        try:
            tmp.chmod(0o600)
        except OSError:
            pass
        tmp.replace(path)

    def _save_or_undo(self, undo: Callable[[], None]) -> None:
        """Persist; if the write fails, run *undo* so memory matches disk. Caller holds the lock."""
        try:
            self._save()
        except OSError:
            undo()
            raise

    # ------------------------------------------------------------------
    # Clients
    # ------------------------------------------------------------------

    def get_client(self, client_id: str) -> RegisteredClient | None:
        with self._lock:
            return self._clients.get(client_id)

    def put_client(self, client: RegisteredClient) -> None:
        with self._lock:
            if client.client_id in self._clients:
                raise ValueError(f"client_id already registered: {client.client_id}")
            self._clients[client.client_id] = client
            self._save_or_undo(lambda: self._clients.pop(client.client_id, None))

    def client_count(self) -> int:
        with self._lock:
            return len(self._clients)

    # ------------------------------------------------------------------
    # Authorization codes
    # ------------------------------------------------------------------

    def store_code(self, code: AuthorizationCode) -> None:
        with self._lock:
            self._codes[code.code] = code

    def get_code(self, code: str) -> AuthorizationCode | None:
        with self._lock:
            return self._codes.get(code)

    def consume_code(self, code: str, replacement: OAuthToken) -> bool:
        """Atomically redeem *code* for the *replacement* pair.

        Returns False if the code was already gone. If the pair cannot be
        persisted the code is put back, so the client can retry the exchange.
        """
        with self._lock:
            record = self._codes.get(code)
            if record is None or record.used or record.is_expired():
                return False
            record.used = True
            del self._codes[code]
            self._insert_token(replacement)

            def undo() -> None:
                record.used = False
                self._codes[code] = record
                self._remove_token(replacement)

            self._save_or_undo(undo)
            return True

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def _insert_token(self, token: OAuthToken) -> None:
        self._tokens[token.access_token_hash] = token
        self._refresh_index[token.refresh_token_hash] = token.access_token_hash
        self._writes += 1
        if self._writes % CLEANUP_EVERY_WRITES == 0:
            purged = self._purge(datetime.now(UTC))
            if purged:
                logger.debug("Purged %d expired OAuth records", purged)

    def _remove_token(self, token: OAuthToken) -> None:
        self._tokens.pop(token.access_token_hash, None)
        self._refresh_index.pop(token.refresh_token_hash, None)

    def get_token(self, access_token_hash: str) -> OAuthToken | None:
        with self._lock:
            return self._tokens.get(access_token_hash)

    def get_token_by_refresh(self, refresh_token_hash: str) -> OAuthToken | None:
        with self._lock:
            access_hash = self._refresh_index.get(refresh_token_hash)
            return self._tokens.get(access_hash) if access_hash else None

    def claim_refresh(
        self, refresh_token_hash: str, replacement: OAuthToken
    ) -> OAuthToken | None:
        """Atomically revoke the pair behind a refresh token and store its successor.

        Returns the old pair if this caller won the claim, None if the token is
        unknown or was already revoked. If the rotation cannot be persisted the
        old pair is left live and the successor dropped.
        """
        with self._lock:
            access_hash = self._refresh_index.get(refresh_token_hash)
            token = self._tokens.get(access_hash) if access_hash else None
            if token is None or token.revoked:
                return None
            token.revoked_at = datetime.now(UTC)
            self._insert_token(replacement)

            def undo() -> None:
                token.revoked_at = None
                self._remove_token(replacement)

            self._save_or_undo(undo)
            return token

    def revoke_token(self, access_token_hash: str) -> bool:
        with self._lock:
            token = self._tokens.get(access_token_hash)
            if token is None or token.revoked:
                return False
            token.revoked_at = datetime.now(UTC)
            self._save_or_undo(lambda: setattr(token, "revoked_at", None))
            return True

    def revoke_by_refresh(self, refresh_token_hash: str) -> bool:
        with self._lock:
            access_hash = self._refresh_index.get(refresh_token_hash)
        if access_hash:
            return self.revoke_token(access_hash)
        return False

    def revoke_family(self, family_id: str) -> int:
        """Revoke every live pair descended from one authorization code."""
        now = datetime.now(UTC)
        with self._lock:
            revoked = 0
            for token in self._tokens.values():
                if token.family_id == family_id and not token.revoked:
                    token.revoked_at = now
                    revoked += 1
            if revoked:
                self._save()
            return revoked

    def _purge(self, now: datetime) -> int:
        """Drop used/expired codes and pairs whose refresh token has expired. Caller holds the lock.

        Rotated pairs are kept until their refresh expiry so that a replayed
        refresh token is still recognised and revokes its family.
        """
        stale_codes = [k for k, v in self._codes.items() if v.used or v.is_expired(now)]
        for k in stale_codes:
            del self._codes[k]

        stale_tokens = [v for v in self._tokens.values() if v.refresh_expired(now)]
        for token in stale_tokens:
            self._remove_token(token)
        return len(stale_codes) + len(stale_tokens)

    def cleanup_expired(self) -> int:
        with self._lock:
            purged = self._purge(datetime.now(UTC))
            if purged:
                self._save()
            return purged
