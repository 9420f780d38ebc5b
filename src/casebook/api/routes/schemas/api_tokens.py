# API token schemas.
# Created: 2026-03-02

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class CreateTokenRequest(BaseModel):
    """Create a new API token."""

    name: str = Field(..., min_length=1, max_length=100)
    permissions: Literal["read", "write", "admin"] = "read"
    expires_in_days: int | None = Field(default=None, gt=0, le=3650)


class ApiTokenInfo(BaseModel):
    """API token info (no secrets)."""

    id: str
    name: str
    permissions: str
    user_id: str
    created_at: datetime
    expires_at: datetime | None = None
    last_used_at: datetime | None = None
    revoked_at: datetime | None = None


class ApiTokenCreatedResponse(BaseModel):
    """Response when a new API token is created. The plaintext is shown once."""

    token: str  # Full plaintext, only shown at creation
    id: str
    name: str
    permissions: str
    created_at: datetime
    expires_at: datetime | None = None


class WhoAmIResponse(BaseModel):
    organization_id: str
    user_id: str
    permissions: str
    client_id: str
    scope: str | None = None
    credential_type: str | None = None
