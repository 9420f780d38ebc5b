# Shared FastAPI dependencies for the API layer.
# Created: 2026-03-02

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse

from casebook.api.bearer import AuthContext, extract_bearer_token, has_permission, validate_token
from casebook.api.sessions import SessionUser, get_session_user

if TYPE_CHECKING:
    from fastapi import FastAPI


class BearerAuthError(Exception):
    """Bearer authentication failure, rendered as an RFC 6750 error body."""

    def __init__(self, status_code: int, error: str, description: str, www_authenticate: str):
        super().__init__(description)
        self.status_code = status_code
        self.error = error
        self.description = description
        self.www_authenticate = www_authenticate


async def _bearer_error_handler(request: Request, exc: BearerAuthError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.error, "error_description": exc.description},
        headers={
            "WWW-Authenticate": exc.www_authenticate,
            "Access-Control-Allow-Origin": "*",
        },
    )


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BearerAuthError, _bearer_error_handler)


def get_base_url(request: Request) -> str:
    """Public base URL: configured value, else derived from the Host header."""
    from casebook.config import get_settings

    configured = get_settings().public_base_url
    if configured:
        return configured.rstrip("/")
    host = request.headers.get("host") or "localhost:3000"
    protocol = "http" if "localhost" in host or host.startswith("127.0.0.1") else "https"
    return f"{protocol}://{host}"


def _www_authenticate(request: Request, error: str | None = None) -> str:
    metadata = f"{get_base_url(request)}/.well-known/oauth-protected-resource"
    if error:
        return f'Bearer error="{error}", resource_metadata="{metadata}"'
    return f'Bearer resource_metadata="{metadata}"'


async def require_auth(request: Request) -> AuthContext:
    """Resolve the bearer credential of *request* or answer 401.

    The result is also stashed on ``request.state.auth`` for handlers that
    do not take it as a parameter.
    """
    token = extract_bearer_token(request.headers.get("authorization"))
    if token is None:
        raise BearerAuthError(
            401, "invalid_request", "Authorization required", _www_authenticate(request)
        )

    # Credential lookup touches the token files
    ctx = await asyncio.to_thread(validate_token, token)
    if ctx is None:
        raise BearerAuthError(
            401,
            "invalid_token",
            "Invalid or expired access token",
            _www_authenticate(request, "invalid_token"),
        )
    request.state.auth = ctx
    return ctx


def require_permission(level: str):
    """FastAPI dependency that checks the caller's permission level.

    Usage::

        @router.post("/cases", dependencies=[Depends(require_permission("write"))])
        async def create_case(...): ...
    """

    async def _check(request: Request) -> AuthContext:
        ctx = await require_auth(request)
        if not has_permission(ctx, level):
            raise BearerAuthError(
                403,
                "insufficient_scope",
                f"Requires {level} permission",
                _www_authenticate(request, "insufficient_scope"),
            )
        return ctx

    return _check


async def require_session(request: Request) -> SessionUser:
    """Browser-session dependency for the settings routes."""
    user = get_session_user(request)
    if user is None:
        raise HTTPException(status_code=401, detail="Not signed in")
    return user
