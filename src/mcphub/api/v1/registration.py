# Dynamic client registration router (RFC 7591 / RFC 7592 style management).
# Created: 2026-10-12

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, Response

from mcphub.api.oauth2.errors import InvalidClientMetadataError, OAuthError, ServerError
from mcphub.hub_auth import bearer_token

logger = logging.getLogger(__name__)

router = APIRouter(tags=["OAuth2 Registration"])

_NO_STORE = {"Cache-Control": "no-store", "Pragma": "no-cache"}


def _error_response(exc: OAuthError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def _json_body(request: Request) -> dict:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise InvalidClientMetadataError("Request body must be a JSON object") from None
    if not isinstance(body, dict):
        raise InvalidClientMetadataError("Request body must be a JSON object")
    return body


async def _base_url(request: Request) -> str:
    from mcphub.api.oauth2.metadata import resolve_base_url
    from mcphub.config import get_system_config_reader

    config = await get_system_config_reader().get_system_config()
    return resolve_base_url(config, str(request.base_url))


@router.post("/oauth/register", status_code=201)
async def register_client(request: Request):
    """Register a new OAuth client."""
    from mcphub.api.oauth2.registration import get_registration_service

    try:
        body = await _json_body(request)
        response = await get_registration_service().register(
            body,
            base_url=await _base_url(request),
            principal=getattr(request.state, "principal", None),
        )
    except OAuthError as exc:
        return _error_response(exc)
    except Exception:
        logger.exception("Dynamic client registration failed")
        return _error_response(ServerError("Failed to register client"))
    return JSONResponse(status_code=201, content=response, headers=_NO_STORE)


@router.get("/oauth/register/{client_id}")
async def get_client_configuration(client_id: str, request: Request):
    from mcphub.api.oauth2.registration import get_registration_service

    token = bearer_token(request.headers.get("Authorization"))
    try:
        response = await get_registration_service().get_configuration(client_id, token)
    except OAuthError as exc:
        return _error_response(exc)
    return JSONResponse(content=response, headers=_NO_STORE)


@router.put("/oauth/register/{client_id}")
async def update_client_configuration(client_id: str, request: Request):
    from mcphub.api.oauth2.registration import get_registration_service

    token = bearer_token(request.headers.get("Authorization"))
    try:
        body = await _json_body(request)
        response = await get_registration_service().update_configuration(client_id, token, body)
    except OAuthError as exc:
        return _error_response(exc)
    except Exception:
        logger.exception("Update of client registration %s failed", client_id)
        return _error_response(ServerError("Failed to update client configuration"))
    return JSONResponse(content=response, headers=_NO_STORE)


@router.delete("/oauth/register/{client_id}", status_code=204)
async def delete_client_registration(client_id: str, request: Request):
    from mcphub.api.oauth2.registration import get_registration_service

    token = bearer_token(request.headers.get("Authorization"))
    try:
        await get_registration_service().delete_registration(client_id, token)
    except OAuthError as exc:
        return _error_response(exc)
    return Response(status_code=204)
