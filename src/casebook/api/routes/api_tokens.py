# API Tokens router: create, list, revoke.
# Created: 2026-03-02
#
# Managed from the browser session; every operation is scoped to the
# session user's organization.

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from casebook.api.api_tokens import ApiTokenRecord, get_api_token_manager
from casebook.api.deps import require_session
from casebook.api.routes.schemas.api_tokens import (
    ApiTokenCreatedResponse,
    ApiTokenInfo,
    CreateTokenRequest,
)
from casebook.api.sessions import SessionUser

router = APIRouter(tags=["API Tokens"])


def _info(record: ApiTokenRecord) -> ApiTokenInfo:
    return ApiTokenInfo(
        id=record.id,
        name=record.name,
        permissions=record.permissions,
        user_id=record.user_id,
        created_at=record.created_at,
        expires_at=record.expires_at,
        last_used_at=record.last_used_at,
        revoked_at=record.revoked_at,
    )


@router.post("/api/tokens", response_model=ApiTokenCreatedResponse, status_code=201)
async def create_token(req: CreateTokenRequest, user: SessionUser = Depends(require_session)):
    """Create a new API token. The plaintext token is only returned once."""
    record, plaintext = get_api_token_manager().create(
        name=req.name,
        organization_id=user.organization_id,
        user_id=user.user_id,
        permissions=req.permissions,
        expires_in_days=req.expires_in_days,
    )
    return ApiTokenCreatedResponse(
        token=plaintext,
        id=record.id,
        name=record.name,
        permissions=record.permissions,
        created_at=record.created_at,
        expires_at=record.expires_at,
    )


@router.get("/api/tokens", response_model=list[ApiTokenInfo])
async def list_tokens(user: SessionUser = Depends(require_session)):
    """List the organization's API tokens (no secrets)."""
    return [_info(r) for r in get_api_token_manager().list_tokens(user.organization_id)]


@router.delete("/api/tokens/{token_id}")
async def revoke_token(token_id: str, user: SessionUser = Depends(require_session)):
    """Revoke an API token by ID."""
    if not get_api_token_manager().revoke(token_id, user.organization_id):
        raise HTTPException(status_code=404, detail="API token not found")
    return {"status": "ok", "revoked": token_id}
