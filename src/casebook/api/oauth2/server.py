# OAuth2 Authorization Server with mandatory PKCE.
# Created: 2026-03-02
#
# Implements the authorization code flow (RFC 6749 + RFC 7636, S256 only)
# and rotating refresh tokens for public MCP clients. Results come back as
# (value, error) pairs; nothing here raises for a client mistake.

from __future__ import annotations

import hashlib
import logging
import secrets
from collections.abc import Mapping
from datetime import UTC, datetime, timedelta

from casebook.api.oauth2.models import (
    INVALID_CODE_GRANT,
    INVALID_REFRESH_GRANT,
    AuthorizationCode,
    IssuedTokens,
    OAuthError,
    OAuthToken,
)
from casebook.api.oauth2.pkce import verify_code_challenge
from casebook.api.oauth2.registry import ClientRegistry
from casebook.api.oauth2.state import PendingAuthorization
from casebook.api.oauth2.storage import OAuthStorage
from casebook.security.audit import AuditSeverity

logger = logging.getLogger(__name__)

# Default lifetimes
ACCESS_TOKEN_TTL = timedelta(hours=1)
REFRESH_TOKEN_TTL = timedelta(days=30)
CODE_TTL = timedelta(minutes=10)

ACCESS_TOKEN_PREFIX = "cbat_"
REFRESH_TOKEN_PREFIX = "cbrt_"


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def _audit(action: str, target: str, **kwargs) -> None:
    from casebook.security.audit import get_audit_logger

    get_audit_logger().log_api_event(action=action, target=target, **kwargs)


class AuthorizationServer:
    """OAuth2 authorization server with PKCE and dynamic registration."""

    def __init__(
        self,
        storage: OAuthStorage | None = None,
        *,
        access_token_ttl: timedelta = ACCESS_TOKEN_TTL,
        refresh_token_ttl: timedelta = REFRESH_TOKEN_TTL,
        code_ttl: timedelta = CODE_TTL,
        strict_client_validation: bool = True,
    ):
        self.storage = storage or OAuthStorage()
        self.registry = ClientRegistry(self.storage)
        self.access_token_ttl = access_token_ttl
        self.refresh_token_ttl = refresh_token_ttl
        self.code_ttl = code_ttl
        self.strict_client_validation = strict_client_validation

    # ------------------------------------------------------------------
    # Authorization endpoint
    # ------------------------------------------------------------------

    def check_authorization_request(
        self, query: Mapping[str, str]
    ) -> tuple[PendingAuthorization | None, OAuthError | None]:
        """Validate /oauth/authorize parameters before any login redirect.

        Returns (pending, error). Errors with ``redirectable=False`` must be
        answered with JSON, never with a redirect to the supplied URI.
        """
        response_type = query.get("response_type")
        client_id = query.get("client_id")
        redirect_uri = query.get("redirect_uri")
        code_challenge = query.get("code_challenge")
        method = query.get("code_challenge_method") or "S256"

        if response_type != "code":
            return None, OAuthError(
                "unsupported_response_type",
                "Only 'code' response type is supported",
                redirectable=bool(redirect_uri),
            )
        if not client_id:
            return None, OAuthError(
                "invalid_request", "client_id is required", redirectable=bool(redirect_uri)
            )
        if not redirect_uri:
            return None, OAuthError(
                "invalid_request", "redirect_uri is required", redirectable=False
            )

        if self.strict_client_validation:
            client = self.storage.get_client(client_id)
            if client is None or redirect_uri not in client.redirect_uris:
                return None, OAuthError(
                    "invalid_request",
                    "Unknown client_id or unregistered redirect_uri",
                    redirectable=False,
                )

        if not code_challenge:
            return None, OAuthError("invalid_request", "code_challenge is required (PKCE)")
        if method != "S256":
            return None, OAuthError(
                "invalid_request", "Only S256 code_challenge_method is supported"
            )

        return PendingAuthorization(
            response_type=response_type,
            client_id=client_id,
            redirect_uri=redirect_uri,
            code_challenge=code_challenge,
            code_challenge_method=method,
            state=query.get("state") or None,
            scope=query.get("scope") or None,
            resource=query.get("resource") or None,
        ), None

    def issue_code(self, pending: PendingAuthorization, user_id: str, organization_id: str) -> str:
        """Create a single-use authorization code for a logged-in user."""
        now = datetime.now(UTC)
        code = secrets.token_urlsafe(32)
        self.storage.store_code(
            AuthorizationCode(
                code=code,
                client_id=pending.client_id,
                user_id=user_id,
                organization_id=organization_id,
                redirect_uri=pending.redirect_uri,
                code_challenge=pending.code_challenge,
                code_challenge_method=pending.code_challenge_method,
                scope=pending.scope,
                created_at=now,
                expires_at=now + self.code_ttl,
            )
        )
        _audit(
            "oauth_code_issued",
            f"client:{pending.client_id}",
            actor=user_id,
            organization_id=organization_id,
            scope=pending.scope,
        )
        return code

    # ------------------------------------------------------------------
    # Token endpoint
    # ------------------------------------------------------------------

    def exchange(
        self,
        code: str,
        client_id: str,
        redirect_uri: str,
        code_verifier: str,
    ) -> tuple[IssuedTokens | None, OAuthError | None]:
        """Exchange an authorization code + verifier for a token pair."""
        auth_code = self.storage.get_code(code)
        if (
            auth_code is None
            or auth_code.used
            or auth_code.is_expired()
            or auth_code.client_id != client_id
        ):
            return None, INVALID_CODE_GRANT

        if auth_code.redirect_uri != redirect_uri:
            return None, INVALID_CODE_GRANT

        if not verify_code_challenge(
            code_verifier, auth_code.code_challenge, auth_code.code_challenge_method
        ):
            return None, INVALID_CODE_GRANT

        pair, tokens = self._new_pair(
            client_id=auth_code.client_id,
            user_id=auth_code.user_id,
            organization_id=auth_code.organization_id,
            scope=auth_code.scope,
            family_id=secrets.token_hex(8),
        )
        # Single use: only one concurrent exchange wins the claim
        if not self.storage.consume_code(code, pair):
            logger.warning("Authorization code replay for client %s", client_id)
            _audit(
                "oauth_code_replay",
                f"client:{client_id}",
                actor=auth_code.user_id,
                organization_id=auth_code.organization_id,
                severity=AuditSeverity.ALERT,
            )
            return None, INVALID_CODE_GRANT

        _audit(
            "oauth_token_issued",
            f"client:{client_id}",
            actor=auth_code.user_id,
            organization_id=auth_code.organization_id,
            grant_type="authorization_code",
            scope=auth_code.scope,
        )
        return tokens, None

    def refresh(
        self, refresh_token: str, client_id: str
    ) -> tuple[IssuedTokens | None, OAuthError | None]:
        """Rotate a refresh token: revoke the presented pair, mint a new one.

        Presenting a refresh token that was already rotated or revoked is
        treated as leakage and revokes every pair in its family.
        """
        refresh_hash = hash_token(refresh_token)
        old = self.storage.get_token_by_refresh(refresh_hash)
        if old is None or old.client_id != client_id or old.refresh_expired():
            return None, INVALID_REFRESH_GRANT

        pair, tokens = self._new_pair(
            client_id=old.client_id,
            user_id=old.user_id,
            organization_id=old.organization_id,
            scope=old.scope,
            family_id=old.family_id,
        )
        if old.revoked or self.storage.claim_refresh(refresh_hash, pair) is None:
            revoked = self.storage.revoke_family(old.family_id)
            logger.warning(
                "Refresh token reuse for client %s; revoked %d pair(s)", client_id, revoked
            )
            _audit(
                "oauth_refresh_reuse",
                f"client:{client_id}",
                actor=old.user_id,
                organization_id=old.organization_id,
                severity=AuditSeverity.ALERT,
                revoked=revoked,
            )
            return None, INVALID_REFRESH_GRANT

        _audit(
            "oauth_token_issued",
            f"client:{client_id}",
            actor=old.user_id,
            organization_id=old.organization_id,
            grant_type="refresh_token",
        )
        return tokens, None

    def _new_pair(
        self,
        client_id: str,
        user_id: str,
        organization_id: str,
        scope: str | None,
        family_id: str,
    ) -> tuple[OAuthToken, IssuedTokens]:
        """Generate a token pair. The caller stores the returned record."""
        now = datetime.now(UTC)
        access_token = f"{ACCESS_TOKEN_PREFIX}{secrets.token_urlsafe(32)}"
        refresh_token = f"{REFRESH_TOKEN_PREFIX}{secrets.token_urlsafe(32)}"

        record = OAuthToken(
            id=secrets.token_hex(8),
            access_token_hash=hash_token(access_token),
            refresh_token_hash=hash_token(refresh_token),
            client_id=client_id,
            user_id=user_id,
            organization_id=organization_id,
            family_id=family_id,
            scope=scope,
            created_at=now,
            expires_at=now + self.access_token_ttl,
            refresh_expires_at=now + self.refresh_token_ttl,
        )
        return record, IssuedTokens(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=int(self.access_token_ttl.total_seconds()),
            scope=scope,
        )

    # ------------------------------------------------------------------
    # Revocation / verification
    # ------------------------------------------------------------------

    def revoke(self, token: str, token_type_hint: str | None = None) -> bool:
        """Revoke an access or refresh token (RFC 7009)."""
        token_hash = hash_token(token)
        if token_type_hint == "refresh_token":
            revoked = self.storage.revoke_by_refresh(token_hash) or self.storage.revoke_token(
                token_hash
            )
        else:
            revoked = self.storage.revoke_token(token_hash) or self.storage.revoke_by_refresh(
                token_hash
            )
        if revoked:
            _audit("oauth_token_revoked", "token", severity=AuditSeverity.WARNING)
        return revoked

    def verify_access_token(self, access_token: str) -> OAuthToken | None:
        """Return the stored pair if *access_token* is live, else None."""
        token = self.storage.get_token(hash_token(access_token))
        if token is None or not token.access_valid():
            return None
        return token


# Singleton
_server: AuthorizationServer | None = None


def get_oauth_server() -> AuthorizationServer:
    global _server
    if _server is None:
        from casebook.config import get_settings

        settings = get_settings()
        _server = AuthorizationServer(
            OAuthStorage(persist_path=settings.resolved_data_dir() / "oauth_store.json"),
            access_token_ttl=timedelta(seconds=settings.access_token_ttl_seconds),
            refresh_token_ttl=timedelta(seconds=settings.refresh_token_ttl_seconds),
            code_ttl=timedelta(seconds=settings.auth_code_ttl_seconds),
            strict_client_validation=settings.strict_client_validation,
        )
        purged = _server.storage.cleanup_expired()
        if purged:
            logger.info("Purged %d expired OAuth records", purged)
    return _server


def reset_oauth_server() -> None:
    global _server
    _server = None
