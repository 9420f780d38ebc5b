# OAuth discovery documents (RFC 8414, RFC 9728).
# Created: 2026-03-02

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response

from casebook.api.deps import get_base_url
from casebook.api.oauth2.models import (
    SUPPORTED_CHALLENGE_METHODS,
    SUPPORTED_GRANT_TYPES,
    SUPPORTED_RESPONSE_TYPES,
    SUPPORTED_SCOPES,
)
from casebook.api.routes.schemas.oauth2 import (
    AuthorizationServerMetadata,
    ProtectedResourceMetadata,
)

router = APIRouter(tags=["Discovery"])

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}
_CACHE = {"Cache-Control": "public, max-age=3600"}

# Path of the MCP SSE endpoint guarded by these credentials
MCP_RESOURCE_PATH = "/api/mcp/sse"


@router.get("/.well-known/oauth-authorization-server")
async def authorization_server_metadata(request: Request):
    base = get_base_url(request)
    metadata = AuthorizationServerMetadata(
        issuer=base,
        authorization_endpoint=f"{base}/oauth/authorize",
        token_endpoint=f"{base}/oauth/token",
        revocation_endpoint=f"{base}/oauth/revoke",
        registration_endpoint=f"{base}/oauth/register",
        response_types_supported=list(SUPPORTED_RESPONSE_TYPES),
        grant_types_supported=list(SUPPORTED_GRANT_TYPES),
        token_endpoint_auth_methods_supported=["none"],
        revocation_endpoint_auth_methods_supported=["none"],
        code_challenge_methods_supported=list(SUPPORTED_CHALLENGE_METHODS),
        scopes_supported=list(SUPPORTED_SCOPES),
        service_documentation=f"{base}/docs/mcp",
    )
    return JSONResponse(content=metadata.model_dump(), headers={**CORS_HEADERS, **_CACHE})


@router.get("/.well-known/oauth-protected-resource")
async def protected_resource_metadata(request: Request):
    base = get_base_url(request)
    metadata = ProtectedResourceMetadata(
        resource=f"{base}{MCP_RESOURCE_PATH}",
        authorization_servers=[base],
        scopes_supported=list(SUPPORTED_SCOPES),
        bearer_methods_supported=["header"],
        resource_documentation=f"{base}/docs/mcp",
    )
    return JSONResponse(content=metadata.model_dump(), headers={**CORS_HEADERS, **_CACHE})


@router.options("/.well-known/oauth-authorization-server")
@router.options("/.well-known/oauth-protected-resource")
async def metadata_preflight():
    return Response(status_code=204, headers=CORS_HEADERS)
