"""HTTP server for the MCPHub auth core.

``create_api_app()`` builds the FastAPI application: OAuth 2.0 endpoints and
discovery documents at the site root, administrative endpoints under
``{base_path}/api/v1/``, all behind ``auth_middleware``.
"""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


def create_api_app():
    """Build the FastAPI application."""
    from fastapi import FastAPI
    from fastapi.middleware.cors import CORSMiddleware

    from mcphub import __version__
    from mcphub.api.v1 import mount_v1_routers
    from mcphub.config import Settings
    from mcphub.hub_auth import auth_middleware

    settings = Settings.load()
    api_prefix = f"{settings.base_path}/api/v1"

    app = FastAPI(
        title="MCPHub Auth",
        description="OAuth 2.0 authorization server and request authentication for MCPHub.",
        version=__version__,
        docs_url=f"{api_prefix}/docs",
        redoc_url=f"{api_prefix}/redoc",
        openapi_url=f"{api_prefix}/openapi.json",
    )

    # --- CORS -----------------------------------------------------------
    app.add_middleware(
        CORSMiddleware,
        allow_origin_regex=r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$",
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "x-auth-token"],
    )

    # --- Auth middleware -------------------------------------------------
    app.middleware("http")(auth_middleware)

    # --- Routers ---------------------------------------------------------
    mount_v1_routers(app, base_path=settings.base_path)

    return app


def run_api_server(host: str = "127.0.0.1", port: int = 3000, dev: bool = False) -> None:
    """Start the API server with uvicorn."""
    import uvicorn

    logger.info("MCPHub auth server listening on http://%s:%d", host, port)

    if dev:
        import pathlib

        src_dir = str(pathlib.Path(__file__).resolve().parent.parent)
        uvicorn.run(
            "mcphub.api.serve:create_api_app",
            factory=True,
            host=host,
            port=port,
            reload=True,
            reload_dirs=[src_dir],
            reload_includes=["*.py"],
            log_level="debug",
        )
    else:
        app = create_api_app()
        uvicorn.run(app, host=host, port=port, log_config=None)
