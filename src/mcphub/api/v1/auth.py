# Auth router: current principal and bearer key administration.
# Created: 2026-10-12

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from mcphub.api.deps import require_admin, require_principal
from mcphub.api.v1.schemas.bearer_keys import (
    BearerKeyInfo,
    CreateBearerKeyRequest,
    CurrentUserResponse,
    UpdateBearerKeyRequest,
)
from mcphub.security.principal import Principal

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Auth"])
keys_router = APIRouter(tags=["Bearer Keys"], dependencies=[Depends(require_admin)])


@router.get("/auth/user", response_model=CurrentUserResponse)
async def current_user(principal: Principal | None = Depends(require_principal)):
    """Return the authenticated principal."""
    if principal is None:
        # skipAuth mode: anonymous with full access
        return CurrentUserResponse(username=None, isAdmin=True, authMethod=None)
    return CurrentUserResponse(**principal.to_dict())


@keys_router.get("/auth/keys", response_model=list[BearerKeyInfo])
async def list_bearer_keys():
    from mcphub.api.bearer_keys import get_bearer_key_manager

    keys = await get_bearer_key_manager().list_keys()
    return [BearerKeyInfo(**k.model_dump()) for k in keys]


@keys_router.post("/auth/keys", response_model=BearerKeyInfo, status_code=201)
async def create_bearer_key(body: CreateBearerKeyRequest):
    """Create a bearer key. The token is generated when not supplied."""
    from mcphub.api.bearer_keys import get_bearer_key_manager

    record = await get_bearer_key_manager().create(**body.model_dump())
    return BearerKeyInfo(**record.model_dump())


@keys_router.put("/auth/keys/{key_id}", response_model=BearerKeyInfo)
async def update_bearer_key(key_id: str, body: UpdateBearerKeyRequest):
    from mcphub.api.bearer_keys import get_bearer_key_manager

    record = await get_bearer_key_manager().update(key_id, **body.model_dump(exclude_unset=True))
    if record is None:
        raise HTTPException(status_code=404, detail="Bearer key not found")
    return BearerKeyInfo(**record.model_dump())


@keys_router.delete("/auth/keys/{key_id}")
async def delete_bearer_key(key_id: str):
    from mcphub.api.bearer_keys import get_bearer_key_manager

    if not await get_bearer_key_manager().delete(key_id):
        raise HTTPException(status_code=404, detail="Bearer key not found")
    return {"status": "ok"}
