# Shared FastAPI dependencies for the API layer.
# Created: 2026-10-12

from __future__ import annotations

from fastapi import HTTPException, Request

from mcphub.security.principal import Principal


async def require_principal(request: Request) -> Principal | None:
    """Return the principal attached by ``auth_middleware``.

    Usage::

        @router.get("/auth/user")
        async def current_user(principal: Principal | None = Depends(require_principal)): ...

    With ``routing.skipAuth`` on, requests are admitted without a principal and
    this returns None.
    """
    principal = getattr(request.state, "principal", None)
    if principal is None and not getattr(request.state, "auth_skipped", False):
        raise HTTPException(status_code=401, detail="Authentication required")
    return principal


async def require_admin(request: Request) -> Principal | None:
    """Like ``require_principal`` but only admins (or skipAuth mode) pass."""
    principal = await require_principal(request)
    if principal is not None and not principal.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return principal
