# Browser session established by the upstream identity provider login.
# Created: 2026-03-02
#
# The session is a signed cookie (see casebook.security.signing); no server
# side session store is kept.

from __future__ import annotations

import logging
from dataclasses import dataclass

from fastapi import Request, Response

from casebook.config import get_settings
from casebook.security.signing import create_signed_token, verify_signed_token

logger = logging.getLogger(__name__)

SESSION_COOKIE = "casebook_session"

# Fixed identity used when CASEBOOK_DEV_SESSION is enabled
DEV_SESSION_USER_ID = "local-dev-user"
DEV_SESSION_ORG_ID = "local-dev-org"


@dataclass(frozen=True)
class SessionUser:
    """The logged-in user of a browser session."""

    user_id: str
    organization_id: str
    name: str = ""


def encode_session(user: SessionUser) -> str:
    settings = get_settings()
    return create_signed_token(
        settings.secret_key,
        {"uid": user.user_id, "org": user.organization_id, "name": user.name},
        ttl_seconds=settings.session_ttl_hours * 3600,
    )


def decode_session(value: str) -> SessionUser | None:
    payload = verify_signed_token(value, get_settings().secret_key)
    if not payload or not payload.get("uid") or not payload.get("org"):
        return None
    return SessionUser(
        user_id=payload["uid"],
        organization_id=payload["org"],
        name=payload.get("name", ""),
    )


def get_session_user(request: Request) -> SessionUser | None:
    """Return the session user for *request*, or None if not logged in."""
    cookie = request.cookies.get(SESSION_COOKIE)
    if cookie:
        user = decode_session(cookie)
        if user is not None:
            return user
        logger.debug("Ignoring invalid or expired session cookie")

    if get_settings().dev_session:
        return SessionUser(
            user_id=DEV_SESSION_USER_ID,
            organization_id=DEV_SESSION_ORG_ID,
            name="Local Developer",
        )
    return None


def set_session_cookie(response: Response, user: SessionUser, secure: bool) -> None:
    response.set_cookie(
        key=SESSION_COOKIE,
        value=encode_session(user),
        httponly=True,
        secure=secure,
        samesite="lax",
        path="/",
        max_age=get_settings().session_ttl_hours * 3600,
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(key=SESSION_COOKIE, path="/")
