# Dynamic client registration schemas (RFC 7591 §2).
# Created: 2026-10-12

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

TokenEndpointAuthMethod = Literal["none", "client_secret_basic", "client_secret_post"]


class ClientMetadata(BaseModel):
    """Client metadata sent to POST/PUT /oauth/register. Unknown members are ignored."""

    model_config = ConfigDict(extra="ignore")

    redirect_uris: list[str] | None = None
    client_name: str | None = None
    grant_types: list[str] | None = None
    response_types: list[str] | None = None
    scope: str | None = None
    token_endpoint_auth_method: TokenEndpointAuthMethod | None = None
    application_type: str | None = None
    contacts: list[str] | None = None
    logo_uri: str | None = None
    client_uri: str | None = None
    policy_uri: str | None = None
    tos_uri: str | None = None
    jwks_uri: str | None = None
    jwks: dict[str, Any] | None = None
