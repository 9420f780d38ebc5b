# OAuth2 router: authorize, callback, token, revoke.
# Created: 2026-03-02

from __future__ import annotations

import logging
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, RedirectResponse, Response

from casebook.api.body import BodyParseError, parse_form_or_json
from casebook.api.deps import get_base_url
from casebook.api.oauth2.models import OAuthError
from casebook.api.oauth2.server import get_oauth_server
from casebook.api.oauth2.state import PendingAuthorization, verify_pending
from casebook.api.routes.schemas.oauth2 import OAuthErrorResponse, TokenResponse
from casebook.api.sessions import get_session_user
from casebook.config import get_settings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["OAuth2"])

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}
_NO_STORE = {"Cache-Control": "no-store", "Pragma": "no-cache"}


def _with_query(uri: str, params: dict[str, str]) -> str | None:
    """Append *params* to *uri*, keeping its existing query. None if unparseable."""
    try:
        parts = urlsplit(uri)
    except ValueError:
        return None
    if not parts.scheme:
        return None
    query = parse_qsl(parts.query, keep_blank_values=True) + list(params.items())
    return urlunsplit(parts._replace(query=urlencode(query)))


def _json_error(error: OAuthError, status_code: int | None = None, headers=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code or error.status_code,
        content=error.to_dict(),
        headers=headers,
    )


def _authorization_error(
    redirect_uri: str | None, error: OAuthError, state: str | None
) -> Response:
    """Redirect the error to the client when its redirect_uri is usable."""
    if redirect_uri and error.redirectable:
        params = error.to_dict()
        if state:
            params["state"] = state
        target = _with_query(redirect_uri, params)
        if target is not None:
            return RedirectResponse(target, status_code=302)
    return _json_error(error)


def _code_redirect(pending: PendingAuthorization, code: str) -> Response:
    params = {"code": code}
    if pending.state:
        params["state"] = pending.state
    target = _with_query(pending.redirect_uri, params)
    if target is None:
        return _json_error(OAuthError("invalid_request", "redirect_uri is not a valid URI"))
    return RedirectResponse(target, status_code=302)


@router.get("/oauth/authorize")
async def authorize(request: Request):
    """Authorization endpoint: issue a code, or send the user to log in first."""
    server = get_oauth_server()
    query = dict(request.query_params)

    pending, error = server.check_authorization_request(query)
    if error is not None:
        return _authorization_error(query.get("redirect_uri"), error, query.get("state"))

    user = get_session_user(request)
    if user is None:
        settings = get_settings()
        base = get_base_url(request)
        signed = pending.to_signed_query(settings.secret_key, settings.pending_auth_ttl_seconds)
        callback_url = f"{base}/oauth/callback?{urlencode(signed)}"
        signin_url = f"{base}/api/auth/signin/linear?{urlencode({'callbackUrl': callback_url})}"
        logger.debug("No session for client %s; redirecting to login", pending.client_id)
        return RedirectResponse(signin_url, status_code=302)

    code = server.issue_code(pending, user.user_id, user.organization_id)
    return _code_redirect(pending, code)


@router.get("/oauth/callback")
async def authorize_callback(request: Request):
    """Finish an authorization request after the upstream login."""
    query = dict(request.query_params)
    if not query.get("client_id") or not query.get("redirect_uri") or not query.get(
        "code_challenge"
    ):
        return _json_error(OAuthError("invalid_request", "Missing required OAuth parameters"))

    pending = verify_pending(query, get_settings().secret_key)
    if pending is None:
        logger.warning("Rejected callback with invalid signature for %s", query.get("client_id"))
        return _json_error(
            OAuthError("invalid_request", "Authorization request was altered or has expired")
        )

    server = get_oauth_server()
    pending, error = server.check_authorization_request(pending.params())
    if error is not None:
        return _json_error(error)

    user = get_session_user(request)
    if user is None:
        return _json_error(
            OAuthError("access_denied", "User authentication failed", status_code=401)
        )

    code = server.issue_code(pending, user.user_id, user.organization_id)
    return _code_redirect(pending, code)


@router.post(
    "/oauth/token",
    responses={200: {"model": TokenResponse}, 400: {"model": OAuthErrorResponse}},
)
async def token_exchange(request: Request):
    """Exchange an authorization code or refresh token for a token pair."""
    headers = {**CORS_HEADERS, **_NO_STORE}

    body = await parse_form_or_json(request)
    if isinstance(body, BodyParseError):
        return _json_error(OAuthError("invalid_request", body.description), headers=headers)

    grant_type = body.get("grant_type")
    client_id = body.get("client_id")
    if not grant_type:
        return _json_error(OAuthError("invalid_request", "grant_type is required"), headers=headers)
    if not client_id:
        return _json_error(OAuthError("invalid_request", "client_id is required"), headers=headers)

    server = get_oauth_server()
    try:
        if grant_type == "authorization_code":
            code = body.get("code")
            redirect_uri = body.get("redirect_uri")
            code_verifier = body.get("code_verifier")
            if not code:
                error = OAuthError("invalid_request", "code is required")
            elif not redirect_uri:
                error = OAuthError("invalid_request", "redirect_uri is required")
            elif not code_verifier:
                error = OAuthError("invalid_request", "code_verifier is required (PKCE)")
            else:
                tokens, error = server.exchange(
                    code=code,
                    client_id=client_id,
                    redirect_uri=redirect_uri,
                    code_verifier=code_verifier,
                )
        elif grant_type == "refresh_token":
            refresh_token = body.get("refresh_token")
            if not refresh_token:
                error = OAuthError("invalid_request", "refresh_token is required")
            else:
                tokens, error = server.refresh(refresh_token, client_id)
        else:
            error = OAuthError(
                "unsupported_grant_type", f"Grant type '{grant_type}' is not supported"
            )
    except OSError:
        logger.exception("Credential store failure during %s grant", grant_type)
        return _json_error(
            OAuthError("server_error", "Temporary failure, try again", status_code=500),
            headers=headers,
        )

    if error is not None:
        return _json_error(error, headers=headers)
    return JSONResponse(content=tokens.to_response(), headers=headers)


@router.post("/oauth/revoke", responses={400: {"model": OAuthErrorResponse}})
async def revoke_token(request: Request):
    """Revoke an access or refresh token (RFC 7009).

    Answers 200 whether or not the token existed.
    """
    body = await parse_form_or_json(request)
    if isinstance(body, BodyParseError):
        return _json_error(OAuthError("invalid_request", body.description), headers=CORS_HEADERS)

    token = body.get("token")
    if not token:
        return _json_error(OAuthError("invalid_request", "token is required"), headers=CORS_HEADERS)

    try:
        get_oauth_server().revoke(token, body.get("token_type_hint"))
    except OSError:
        logger.exception("Credential store failure during revocation")
        return _json_error(
            OAuthError("server_error", "Temporary failure, try again", status_code=500),
            headers=CORS_HEADERS,
        )
    return JSONResponse(content={}, headers=CORS_HEADERS)


@router.options("/oauth/token")
@router.options("/oauth/revoke")
async def token_preflight():
    return Response(status_code=204, headers=CORS_HEADERS)
