# OAuth2 data models.
# Created: 2026-03-02

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime

SUPPORTED_GRANT_TYPES = ("authorization_code", "refresh_token")
SUPPORTED_RESPONSE_TYPES = ("code",)
SUPPORTED_CHALLENGE_METHODS = ("S256",)
SUPPORTED_SCOPES = ("mcp:read", "mcp:write", "mcp:admin")


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class OAuthError:
    """An OAuth error response (RFC 6749 section 5.2 vocabulary)."""

    error: str
    description: str
    status_code: int = 400
    # False when the redirect_uri cannot be trusted with an error redirect
    redirectable: bool = True

    def to_dict(self) -> dict[str, str]:
        return {"error": self.error, "error_description": self.description}


# Every code / refresh-token failure reports the same thing so that callers
# cannot tell "unknown" from "expired" from "wrong verifier".
INVALID_CODE_GRANT = OAuthError(
    "invalid_grant", "Invalid authorization code, redirect_uri, or code_verifier"
)
INVALID_REFRESH_GRANT = OAuthError("invalid_grant", "Invalid or expired refresh token")


@dataclass
class RegisteredClient:
    """Dynamically registered public client (RFC 7591)."""

    client_id: str
    client_name: str
    redirect_uris: list[str] = field(default_factory=list)
    grant_types: list[str] = field(default_factory=lambda: list(SUPPORTED_GRANT_TYPES))
    response_types: list[str] = field(default_factory=lambda: list(SUPPORTED_RESPONSE_TYPES))
    token_endpoint_auth_method: str = "none"
    created_at: datetime = field(default_factory=_now)


@dataclass
class AuthorizationCode:
    """Short-lived, single-use authorization code bound to a PKCE challenge."""

    code: str
    client_id: str
    user_id: str
    organization_id: str
    redirect_uri: str
    code_challenge: str
    code_challenge_method: str  # "S256"
    expires_at: datetime
    scope: str | None = None
    created_at: datetime = field(default_factory=_now)
    used: bool = False

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or _now()) >= self.expires_at


@dataclass
class OAuthToken:
    """Stored access + refresh token pair. Only SHA-256 hashes are kept."""

    id: str
    access_token_hash: str
    refresh_token_hash: str
    client_id: str
    user_id: str
    organization_id: str
    family_id: str
    expires_at: datetime
    refresh_expires_at: datetime
    scope: str | None = None
    created_at: datetime = field(default_factory=_now)
    revoked_at: datetime | None = None

    @property
    def revoked(self) -> bool:
        return self.revoked_at is not None

    def access_valid(self, now: datetime | None = None) -> bool:
        return not self.revoked and (now or _now()) < self.expires_at

    def refresh_expired(self, now: datetime | None = None) -> bool:
        return (now or _now()) >= self.refresh_expires_at


@dataclass
class IssuedTokens:
    """Plaintext tokens handed to the client exactly once."""

    access_token: str
    refresh_token: str
    expires_in: int
    scope: str | None = None
    token_type: str = "Bearer"

    def to_response(self) -> dict[str, str | int]:
        body: dict[str, str | int] = {
            "access_token": self.access_token,
            "token_type": self.token_type,
            "expires_in": self.expires_in,
            "refresh_token": self.refresh_token,
        }
        if self.scope:
            body["scope"] = self.scope
        return body
