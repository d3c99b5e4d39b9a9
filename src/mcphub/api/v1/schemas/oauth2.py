# OAuth2 schemas.
# Created: 2026-10-12

from __future__ import annotations

from pydantic import BaseModel


class TokenResponse(BaseModel):
    """OAuth2 token response (RFC 6749 §5.1)."""

    access_token: str
    token_type: str = "Bearer"
    expires_in: int
    refresh_token: str | None = None
    scope: str


class OAuthErrorResponse(BaseModel):
    error: str
    error_description: str | None = None


class UserInfoResponse(BaseModel):
    sub: str
    username: str
