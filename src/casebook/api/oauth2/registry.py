# Dynamic Client Registration (RFC 7591) for public MCP clients.
# Created: 2026-03-02
#
# Registration is unauthenticated, so a client_id proves nothing about who
# is calling. It only scopes codes and refresh tokens to one registration.

from __future__ import annotations

import logging
import re
import secrets
from typing import Any, Protocol
from urllib.parse import urlsplit

from casebook.api.oauth2.models import (
    SUPPORTED_GRANT_TYPES,
    SUPPORTED_RESPONSE_TYPES,
    OAuthError,
    RegisteredClient,
)

logger = logging.getLogger(__name__)

DEFAULT_CLIENT_NAME = "MCP Client"
CLIENT_ID_PREFIX = "mcp_"

_LOOPBACK_HOSTS = frozenset({"localhost", "127.0.0.1"})
_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.\-]*$")
# Custom schemes are allowed for native apps, but never ones a browser
# would execute or read locally.
_FORBIDDEN_SCHEMES = frozenset({"javascript", "data", "vbscript", "file", "blob"})


class ClientRepository(Protocol):
    def get_client(self, client_id: str) -> RegisteredClient | None: ...

    def put_client(self, client: RegisteredClient) -> None: ...


def generate_client_id() -> str:
    return f"{CLIENT_ID_PREFIX}{secrets.token_hex(16)}"


def check_redirect_uri(uri: Any) -> OAuthError | None:
    """Return an error unless *uri* is loopback, https, or a native-app scheme."""
    if not isinstance(uri, str) or not uri.strip():
        return OAuthError("invalid_redirect_uri", f"Invalid redirect_uri: {uri!r}")
    try:
        parts = urlsplit(uri)
        hostname = parts.hostname
    except ValueError:
        return OAuthError("invalid_redirect_uri", f"Invalid redirect_uri: {uri}")

    scheme = parts.scheme.lower()
    if not scheme or not _SCHEME_RE.match(scheme) or scheme in _FORBIDDEN_SCHEMES:
        return OAuthError("invalid_redirect_uri", f"Invalid redirect_uri: {uri}")

    is_http_family = scheme.startswith("http")
    if is_http_family and not hostname:
        return OAuthError("invalid_redirect_uri", f"Invalid redirect_uri: {uri}")

    is_loopback = hostname in _LOOPBACK_HOSTS
    is_https = scheme == "https"
    is_custom_scheme = not is_http_family
    if not (is_loopback or is_https or is_custom_scheme):
        return OAuthError(
            "invalid_redirect_uri",
            f"redirect_uri must use HTTPS, localhost, or a custom protocol scheme: {uri}",
        )
    return None


def _string_list(value: Any, default: tuple[str, ...]) -> list[str] | None:
    if value is None:
        return list(default)
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        return None
    return list(value)


class ClientRegistry:
    """Validates registration metadata and stores new clients."""

    def __init__(self, repository: ClientRepository):
        self.repository = repository

    def register(self, metadata: dict[str, Any]) -> tuple[RegisteredClient | None, OAuthError | None]:
        """Register a client. Returns (client, error); exactly one is None."""
        redirect_uris = metadata.get("redirect_uris")
        if not isinstance(redirect_uris, list) or not redirect_uris:
            return None, OAuthError(
                "invalid_redirect_uri", "At least one redirect_uri is required"
            )
        for uri in redirect_uris:
            error = check_redirect_uri(uri)
            if error is not None:
                return None, error

        grant_types = _string_list(metadata.get("grant_types"), SUPPORTED_GRANT_TYPES)
        if grant_types is None:
            return None, OAuthError("invalid_client_metadata", "grant_types must be a list")
        for grant_type in grant_types:
            if grant_type not in SUPPORTED_GRANT_TYPES:
                return None, OAuthError(
                    "invalid_client_metadata", f"Unsupported grant_type: {grant_type}"
                )

        response_types = _string_list(metadata.get("response_types"), SUPPORTED_RESPONSE_TYPES)
        if response_types is None:
            return None, OAuthError("invalid_client_metadata", "response_types must be a list")
        for response_type in response_types:
            if response_type not in SUPPORTED_RESPONSE_TYPES:
                return None, OAuthError(
                    "invalid_client_metadata", f"Unsupported response_type: {response_type}"
                )

        client_name = metadata.get("client_name")
        if not isinstance(client_name, str) or not client_name.strip():
            client_name = DEFAULT_CLIENT_NAME
        auth_method = metadata.get("token_endpoint_auth_method")
        if not isinstance(auth_method, str) or not auth_method:
            auth_method = "none"

        client = RegisteredClient(
            client_id=generate_client_id(),
            client_name=client_name,
            redirect_uris=list(redirect_uris),
            grant_types=grant_types,
            response_types=response_types,
            token_endpoint_auth_method=auth_method,
        )
        self.repository.put_client(client)
        logger.info("Registered OAuth client %s (%s)", client.client_id, client.client_name)
        return client, None

    def get(self, client_id: str) -> RegisteredClient | None:
        return self.repository.get_client(client_id)
