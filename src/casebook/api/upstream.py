# Upstream identity provider: Linear OAuth 2.0 login.
# Created: 2026-03-02
#
# Users sign in to Casebook with their Linear account; the Linear user and
# workspace become the Casebook user and organization. Linear tokens are
# only used to read the viewer profile and are never stored.

from __future__ import annotations

import logging
import urllib.parse
from typing import Any

import httpx

from casebook.api.sessions import SessionUser

logger = logging.getLogger(__name__)

LINEAR_AUTH_URL = "https://linear.app/oauth/authorize"
LINEAR_TOKEN_URL = "https://api.linear.app/oauth/token"
LINEAR_GRAPHQL_URL = "https://api.linear.app/graphql"

_VIEWER_QUERY = """
query Viewer {
  viewer {
    id
    name
    displayName
    email
    organization { id name }
  }
}
"""


class UpstreamError(Exception):
    """The identity provider rejected the login or could not be reached."""


class LinearIdentityProvider:
    """Linear OAuth 2.0 authorization code flow.

    Supports:
    - Authorization URL generation
    - Code exchange for a Linear access token
    - Viewer lookup (user + organization)

    Transport failures are retried up to ``max_attempts`` times; every
    request has a finite timeout.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        timeout: float = 15.0,
        max_attempts: int = 2,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.timeout = timeout
        self.max_attempts = max(1, max_attempts)

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def get_auth_url(self, redirect_uri: str, state: str) -> str:
        """Generate the Linear authorization URL to redirect the user to."""
        params = {
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": "read",
            "state": state,
            "prompt": "consent",
        }
        return f"{LINEAR_AUTH_URL}?{urllib.parse.urlencode(params)}"

    async def _post(self, url: str, **kwargs: Any) -> dict[str, Any]:
        last_exc: Exception | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    resp = await client.post(url, **kwargs)
                    resp.raise_for_status()
                    return resp.json()
            except httpx.HTTPStatusError as exc:
                raise UpstreamError(
                    f"Linear returned HTTP {exc.response.status_code} for {url}"
                ) from exc
            except httpx.TransportError as exc:
                last_exc = exc
                logger.warning(
                    "Linear request failed (attempt %d/%d): %s", attempt, self.max_attempts, exc
                )
        raise UpstreamError(f"Linear unreachable: {last_exc}") from last_exc

    async def exchange_code(self, code: str, redirect_uri: str) -> str:
        """Exchange a Linear authorization code for a Linear access token."""
        data = await self._post(
            LINEAR_TOKEN_URL,
            data={
                "code": code,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "redirect_uri": redirect_uri,
                "grant_type": "authorization_code",
            },
        )
        access_token = data.get("access_token")
        if not access_token:
            raise UpstreamError("Linear token response did not include an access_token")
        return access_token

    async def fetch_viewer(self, access_token: str) -> SessionUser:
        """Read the signed-in Linear user and their workspace."""
        data = await self._post(
            LINEAR_GRAPHQL_URL,
            json={"query": _VIEWER_QUERY},
            headers={"Authorization": f"Bearer {access_token}"},
        )
        viewer = (data.get("data") or {}).get("viewer") or {}
        organization = viewer.get("organization") or {}
        if not viewer.get("id") or not organization.get("id"):
            raise UpstreamError("Linear viewer response missing user or organization")
        return SessionUser(
            user_id=viewer["id"],
            organization_id=organization["id"],
            name=viewer.get("displayName") or viewer.get("name") or "",
        )

    async def authenticate(self, code: str, redirect_uri: str) -> SessionUser:
        access_token = await self.exchange_code(code, redirect_uri)
        user = await self.fetch_viewer(access_token)
        logger.info("Linear login for user %s (org %s)", user.user_id, user.organization_id)
        return user


def get_identity_provider() -> LinearIdentityProvider:
    from casebook.config import get_settings

    settings = get_settings()
    return LinearIdentityProvider(
        client_id=settings.linear_client_id,
        client_secret=settings.linear_client_secret,
        timeout=settings.upstream_timeout_seconds,
        max_attempts=settings.upstream_max_attempts,
    )
