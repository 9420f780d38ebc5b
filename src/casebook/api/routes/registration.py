# Dynamic Client Registration router (RFC 7591).
# Created: 2026-03-02

from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response

from casebook.api.body import BodyParseError, parse_json_body
from casebook.api.deps import get_base_url
from casebook.api.oauth2.models import RegisteredClient
from casebook.api.oauth2.server import get_oauth_server
from casebook.api.routes.schemas.oauth2 import ClientRegistrationResponse
from casebook.security.audit import get_audit_logger

logger = logging.getLogger(__name__)

router = APIRouter(tags=["OAuth2"])

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


def _client_response(client: RegisteredClient, base: str) -> dict:
    return ClientRegistrationResponse(
        client_id=client.client_id,
        client_name=client.client_name,
        redirect_uris=client.redirect_uris,
        grant_types=client.grant_types,
        response_types=client.response_types,
        token_endpoint_auth_method=client.token_endpoint_auth_method,
        client_id_issued_at=int(client.created_at.timestamp()),
        registration_client_uri=f"{base}/oauth/register/{client.client_id}",
    ).model_dump()


def _error(error: str, description: str, status_code: int = 400) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "error_description": description},
        headers=CORS_HEADERS,
    )


@router.post("/oauth/register")
async def register_client(request: Request):
    """Register a public client. No authentication is required."""
    body = await parse_json_body(request)
    if isinstance(body, BodyParseError):
        return _error("invalid_request", body.description)

    try:
        client, error = get_oauth_server().registry.register(body.raw)
    except OSError:
        logger.exception("Failed to persist client registration")
        return _error("server_error", "Temporary failure, try again", status_code=500)
    if error is not None:
        return _error(error.error, error.description)

    get_audit_logger().log_api_event(
        action="oauth_client_registered",
        target=f"client:{client.client_id}",
        client_name=client.client_name,
        redirect_uris=client.redirect_uris,
    )

    return JSONResponse(
        status_code=201,
        content=_client_response(client, get_base_url(request)),
        headers=CORS_HEADERS,
    )


@router.get("/oauth/register/{client_id}")
async def read_client(client_id: str, request: Request):
    """Return the public metadata of a registered client."""
    client = get_oauth_server().registry.get(client_id)
    if client is None:
        return _error("invalid_client", "Unknown client_id", status_code=404)
    return JSONResponse(content=_client_response(client, get_base_url(request)), headers=CORS_HEADERS)


@router.options("/oauth/register")
async def register_preflight():
    return Response(status_code=204, headers=CORS_HEADERS)
