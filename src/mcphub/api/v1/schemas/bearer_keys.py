# Bearer key schemas.
# Created: 2026-10-12

from __future__ import annotations

from pydantic import BaseModel, Field

from mcphub.api.bearer_keys import AccessType


class CreateBearerKeyRequest(BaseModel):
    """Create a bearer key. A token is generated when none is given."""

    name: str = Field(..., min_length=1, max_length=100)
    token: str | None = Field(default=None, min_length=1)
    enabled: bool = True
    access_type: AccessType = "all"
    allowed_groups: list[str] = Field(default_factory=list)
    allowed_servers: list[str] = Field(default_factory=list)


class UpdateBearerKeyRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    token: str | None = Field(default=None, min_length=1)
    enabled: bool | None = None
    access_type: AccessType | None = None
    allowed_groups: list[str] | None = None
    allowed_servers: list[str] | None = None


class BearerKeyInfo(BaseModel):
    id: str
    name: str
    token: str
    enabled: bool
    access_type: AccessType
    allowed_groups: list[str]
    allowed_servers: list[str]
    created_at: str
    updated_at: str | None = None


class CurrentUserResponse(BaseModel):
    username: str | None = None
    isAdmin: bool
    authMethod: str | None = None
