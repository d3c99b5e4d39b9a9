# Discovery router: /.well-known metadata documents and /health.
# Created: 2026-10-12

from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Discovery"])

_NOT_CONFIGURED = {"error": "OAuth server not configured"}


@router.get("/.well-known/oauth-authorization-server")
async def authorization_server_metadata(request: Request):
    """OAuth 2.0 Authorization Server Metadata (RFC 8414)."""
    from mcphub.api.oauth2.metadata import build_authorization_server_metadata, resolve_base_url
    from mcphub.config import get_system_config_reader

    config = await get_system_config_reader().get_system_config()
    if not config.oauth_server.enabled:
        return JSONResponse(status_code=404, content=_NOT_CONFIGURED)
    base_url = resolve_base_url(config, str(request.base_url))
    return build_authorization_server_metadata(config, base_url)


@router.get("/.well-known/oauth-protected-resource")
async def protected_resource_metadata(request: Request):
    """OAuth 2.0 Protected Resource Metadata (RFC 9728)."""
    from mcphub.api.oauth2.metadata import build_protected_resource_metadata, resolve_base_url
    from mcphub.config import get_system_config_reader

    config = await get_system_config_reader().get_system_config()
    if not config.oauth_server.enabled:
        return JSONResponse(status_code=404, content=_NOT_CONFIGURED)
    base_url = resolve_base_url(config, str(request.base_url))
    return build_protected_resource_metadata(config, base_url)


@router.get("/health")
async def health():
    from mcphub import __version__

    return {"status": "ok", "version": __version__}
