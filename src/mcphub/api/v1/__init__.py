# API v1 router aggregation.
# Created: 2026-10-12
#
# mount_v1_routers(app) registers the OAuth / discovery routers at the site
# root and the administrative routers at {base_path}/api/v1/.

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fastapi import FastAPI

logger = logging.getLogger(__name__)

# Domain routers, imported lazily inside mount_v1_routers() to avoid circular imports.
_V1_ROUTERS: list[tuple[str, str, str, bool]] = [
    # (module_path, attr_name, tag, under /api/v1)
    ("mcphub.api.v1.well_known", "router", "Discovery", False),
    ("mcphub.api.v1.oauth2", "router", "OAuth2", False),
    ("mcphub.api.v1.registration", "router", "OAuth2 Registration", False),
    ("mcphub.api.v1.auth", "router", "Auth", True),
    ("mcphub.api.v1.auth", "keys_router", "Bearer Keys", True),
]


def mount_v1_routers(app: FastAPI, base_path: str = "") -> None:
    """Mount all v1 routers on *app*."""
    import importlib

    from fastapi import APIRouter

    for module_path, attr_name, tag, under_api in _V1_ROUTERS:
        mod = importlib.import_module(module_path)
        router: APIRouter = getattr(mod, attr_name)
        prefix = f"{base_path}/api/v1" if under_api else ""
        app.include_router(router, prefix=prefix)
        logger.debug("Mounted v1 router: %s.%s (%s)", module_path, attr_name, tag)
