"""Bearer credential validation for protected endpoints.

Two credential kinds reach the resource server in an ``Authorization: Bearer``
header:

* long-lived API tokens (``st_<id>.<secret>``) created in the settings UI or
  with ``casebook token create``, mainly for STDIO MCP clients, and
* short-lived OAuth access tokens minted by the token endpoint.

``lookup_credential`` resolves either kind into a tagged credential and
``validate_token`` normalises it into one ``AuthContext``. Every route that
touches tenant data goes through ``validate_token`` and must filter by
``AuthContext.organization_id``.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Literal

from casebook.api.api_tokens import ApiTokenRecord, get_api_token_manager, parse_token
from casebook.api.oauth2.models import OAuthToken
from casebook.api.oauth2.server import get_oauth_server

logger = logging.getLogger(__name__)

Permission = Literal["read", "write", "admin"]

PERMISSION_LEVELS: dict[str, int] = {"read": 0, "write": 1, "admin": 2}

# Highest scope wins when several are granted
_SCOPE_PERMISSIONS: tuple[tuple[str, Permission], ...] = (
    ("mcp:admin", "admin"),
    ("mcp:write", "write"),
    ("mcp:read", "read"),
)

_BEARER_RE = re.compile(r"^Bearer\s+(\S+)\s*$", re.IGNORECASE)


@dataclass(frozen=True)
class ApiTokenCredential:
    record: ApiTokenRecord
    kind: Literal["api_token"] = "api_token"


@dataclass(frozen=True)
class OAuthCredential:
    token: OAuthToken
    kind: Literal["oauth"] = "oauth"


Credential = ApiTokenCredential | OAuthCredential


@dataclass(frozen=True)
class AuthContext:
    """Resolved tenant / user / permission identity of a request."""

    organization_id: str
    user_id: str
    permissions: Permission
    client_id: str
    scope: str | None = None
    credential: Credential | None = None

    def to_dict(self) -> dict[str, str | None]:
        return {
            "organization_id": self.organization_id,
            "user_id": self.user_id,
            "permissions": self.permissions,
            "client_id": self.client_id,
            "scope": self.scope,
            "credential_type": self.credential.kind if self.credential else None,
        }


def extract_bearer_token(header_value: str | None) -> str | None:
    """Return the token from an ``Authorization: Bearer`` header, or None."""
    if not header_value:
        return None
    match = _BEARER_RE.match(header_value.strip())
    return match.group(1) if match else None


def scope_to_permission(scope: str | None, default: Permission = "write") -> Permission:
    granted = set(scope.split()) if scope else set()
    for name, permission in _SCOPE_PERMISSIONS:
        if name in granted:
            return permission
    return default


def permission_to_scope(permission: str) -> str:
    return f"mcp:{permission}"


def lookup_credential(token: str) -> Credential | None:
    """Find the live credential behind *token*, whichever kind it is."""
    if parse_token(token) is not None:
        record = get_api_token_manager().verify(token)
        return ApiTokenCredential(record) if record else None

    oauth_token = get_oauth_server().verify_access_token(token)
    return OAuthCredential(oauth_token) if oauth_token else None


def validate_token(token: str | None) -> AuthContext | None:
    """Validate a bearer token. Returns None (never raises) when invalid."""
    if not token:
        return None
    credential = lookup_credential(token)
    if credential is None:
        return None

    if isinstance(credential, ApiTokenCredential):
        record = credential.record
        return AuthContext(
            organization_id=record.organization_id,
            user_id=record.user_id,
            permissions=record.permissions,
            client_id="api_token",
            scope=permission_to_scope(record.permissions),
            credential=credential,
        )

    from casebook.config import get_settings

    oauth = credential.token
    return AuthContext(
        organization_id=oauth.organization_id,
        user_id=oauth.user_id,
        permissions=scope_to_permission(oauth.scope, get_settings().oauth_default_permission),
        client_id=oauth.client_id,
        scope=oauth.scope,
        credential=credential,
    )


def has_permission(ctx: AuthContext, required: str) -> bool:
    """True iff the context's permission ranks at or above *required*."""
    return PERMISSION_LEVELS[ctx.permissions] >= PERMISSION_LEVELS[required]
