# Discovery documents: RFC 8414 authorization server metadata and
# RFC 9728 protected resource metadata.
# Created: 2026-10-12

from __future__ import annotations

from typing import Any

from mcphub.config import SystemConfig


def resolve_base_url(config: SystemConfig, request_base_url: str) -> str:
    """``install.baseUrl`` when configured, else the request's scheme + host."""
    return (config.install.base_url or request_base_url).rstrip("/")


def build_authorization_server_metadata(config: SystemConfig, base_url: str) -> dict[str, Any]:
    oauth = config.oauth_server
    if oauth.require_client_secret:
        auth_methods = ["client_secret_basic", "client_secret_post", "none"]
    else:
        auth_methods = ["none"]

    metadata: dict[str, Any] = {
        "issuer": base_url,
        "authorization_endpoint": f"{base_url}/oauth/authorize",
        "token_endpoint": f"{base_url}/oauth/token",
        "userinfo_endpoint": f"{base_url}/oauth/userinfo",
        "revocation_endpoint": f"{base_url}/oauth/revoke",
        "scopes_supported": list(oauth.allowed_scopes),
        "response_types_supported": ["code"],
        "grant_types_supported": ["authorization_code", "refresh_token"],
        "token_endpoint_auth_methods_supported": auth_methods,
        "code_challenge_methods_supported": ["S256", "plain"],
    }
    if oauth.dynamic_registration.enabled:
        metadata["registration_endpoint"] = f"{base_url}/oauth/register"
    return metadata


def build_protected_resource_metadata(config: SystemConfig, base_url: str) -> dict[str, Any]:
    return {
        "resource": base_url,
        "authorization_servers": [base_url],
        "scopes_supported": list(config.oauth_server.allowed_scopes),
        "bearer_methods_supported": ["header"],
    }
