# Browser login via Linear, plus the bearer identity endpoint.
# Created: 2026-03-02

from __future__ import annotations

import logging
from urllib.parse import urlsplit

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, RedirectResponse

from casebook.api.bearer import AuthContext
from casebook.api.deps import get_base_url, require_auth
from casebook.api.routes.schemas.api_tokens import WhoAmIResponse
from casebook.api.sessions import clear_session_cookie, set_session_cookie
from casebook.api.upstream import UpstreamError, get_identity_provider
from casebook.config import get_settings
from casebook.security.audit import AuditSeverity, get_audit_logger
from casebook.security.signing import create_signed_token, verify_signed_token

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Auth"])

# Lifetime of the state parameter sent to Linear
_LOGIN_STATE_TTL = 600


def _same_origin(url: str, base: str) -> bool:
    target, origin = urlsplit(url), urlsplit(base)
    return (target.scheme, target.netloc) == (origin.scheme, origin.netloc)


def _error(error: str, description: str, status_code: int) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "error_description": description},
    )


def _audit(action: str, **context) -> None:
    get_audit_logger().log_api_event(action=action, target="session", **context)


@router.get("/api/auth/signin/linear")
async def signin_linear(request: Request, callbackUrl: str | None = None):  # noqa: N803
    """Start a Linear login and come back to *callbackUrl* afterwards."""
    base = get_base_url(request)
    callback = callbackUrl or f"{base}/"
    if not _same_origin(callback, base):
        return _error("invalid_request", "callbackUrl must be on this server", 400)

    settings = get_settings()
    provider = get_identity_provider()
    if not provider.configured:
        if settings.dev_session:
            return RedirectResponse(callback, status_code=302)
        return _error("temporarily_unavailable", "Linear login is not configured", 503)

    state = create_signed_token(settings.secret_key, {"cb": callback}, _LOGIN_STATE_TTL)
    redirect_uri = f"{base}/api/auth/callback/linear"
    return RedirectResponse(provider.get_auth_url(redirect_uri, state), status_code=302)


@router.get("/api/auth/callback/linear")
async def callback_linear(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
):
    """Finish the Linear login: establish the session and resume the flow."""
    if error:
        logger.info("Linear login declined: %s", error)
        return _error("access_denied", "User authentication failed", 401)
    if not code or not state:
        return _error("invalid_request", "Missing code or state", 400)

    payload = verify_signed_token(state, get_settings().secret_key)
    if payload is None or not payload.get("cb"):
        return _error("invalid_request", "Login state was altered or has expired", 400)

    base = get_base_url(request)
    try:
        user = await get_identity_provider().authenticate(
            code, f"{base}/api/auth/callback/linear"
        )
    except UpstreamError as exc:
        logger.warning("Linear login failed: %s", exc)
        _audit("login_failed", severity=AuditSeverity.WARNING, reason=str(exc))
        return _error("access_denied", "User authentication failed", 401)

    _audit("login", actor=user.user_id, organization_id=user.organization_id)
    response = RedirectResponse(payload["cb"], status_code=302)
    set_session_cookie(response, user, secure=base.startswith("https://"))
    return response


@router.post("/api/auth/signout")
async def signout():
    response = JSONResponse(content={"signed_out": True})
    clear_session_cookie(response)
    return response


@router.get("/api/auth/whoami", response_model=WhoAmIResponse)
async def whoami(ctx: AuthContext = Depends(require_auth)):
    """Identity behind the bearer credential of this request."""
    return WhoAmIResponse(**ctx.to_dict())
