# Dynamic Client Registration (RFC 7591) and client configuration management.
# Created: 2026-10-12
#
# A successful registration returns a registration access token that lets the
# client read, update and delete its own registration for 30 days. Tokens are
# kept in the RegistrationTokenStore next to the clients themselves.

from __future__ import annotations

import logging
import secrets
import time
from collections.abc import Mapping
from typing import Any
from urllib.parse import urlparse

from pydantic import ValidationError

from mcphub.api.oauth2.errors import (
    InvalidClientError,
    InvalidClientMetadataError,
    InvalidRedirectURIError,
    InvalidRequestError,
    InvalidTokenError,
)
from mcphub.api.oauth2.models import OAuthClient, RegistrationToken
from mcphub.api.oauth2.storage import ClientStore, RegistrationTokenStore, get_oauth_storage
from mcphub.api.v1.schemas.registration import ClientMetadata
from mcphub.config import OAuthServerConfig, SystemConfigReader, get_system_config_reader
from mcphub.security.principal import Principal

logger = logging.getLogger(__name__)

DYNAMIC_OWNER = "dynamic-registration"
DEFAULT_CLIENT_NAME = "Dynamically Registered Client"
LOOPBACK_HOSTS = frozenset({"localhost", "127.0.0.1", "::1"})

_OPTIONAL_METADATA = (
    "application_type",
    "contacts",
    "logo_uri",
    "client_uri",
    "policy_uri",
    "tos_uri",
    "jwks_uri",
    "jwks",
)
_UPDATABLE_METADATA = ("contacts", "logo_uri", "client_uri", "policy_uri", "tos_uri")


def validate_redirect_uri(uri: str) -> None:
    """Accept https URIs, or any scheme on a loopback host."""
    try:
        parsed = urlparse(uri)
        hostname = parsed.hostname
    except ValueError:
        raise InvalidRedirectURIError(f"Invalid redirect URI: {uri}") from None
    if not parsed.scheme or not parsed.netloc:
        raise InvalidRedirectURIError(f"Invalid redirect URI: {uri}")
    if parsed.scheme != "https" and hostname not in LOOPBACK_HOSTS:
        raise InvalidRedirectURIError(f"Redirect URI must use HTTPS: {uri}")


def client_configuration(client: OAuthClient) -> dict[str, Any]:
    """RFC 7591 §3.2.1 view of a client, without secrets."""
    meta = client.metadata
    body: dict[str, Any] = {
        "client_id": client.client_id,
        "client_name": client.name,
        "redirect_uris": list(client.redirect_uris),
        "grant_types": list(client.grants),
        "response_types": meta.get("response_types") or ["code"],
        "scope": " ".join(client.scopes),
        "token_endpoint_auth_method": client.token_endpoint_auth_method,
    }
    for key in _OPTIONAL_METADATA:
        if meta.get(key):
            body[key] = meta[key]
    return body


def _parse_metadata(body: Mapping[str, Any]) -> ClientMetadata:
    try:
        return ClientMetadata.model_validate(body)
    except ValidationError as exc:
        if any(err["loc"] and err["loc"][0] == "redirect_uris" for err in exc.errors()):
            raise InvalidRedirectURIError("redirect_uris must be a non-empty array") from None
        raise InvalidClientMetadataError("Invalid client metadata") from None


class DynamicRegistrationService:
    """Registers clients and serves their configuration endpoint."""

    def __init__(
        self,
        clients: ClientStore | None = None,
        registration_tokens: RegistrationTokenStore | None = None,
        config_reader: SystemConfigReader | None = None,
    ):
        if clients is None or registration_tokens is None:
            storage = get_oauth_storage()
            clients = clients or storage
            registration_tokens = registration_tokens or storage
        self.clients = clients
        self.registration_tokens = registration_tokens
        self.config_reader = config_reader or get_system_config_reader()

    async def _registration_config(self) -> OAuthServerConfig:
        config = (await self.config_reader.get_system_config()).oauth_server
        if not config.enabled or not config.dynamic_registration.enabled:
            raise InvalidRequestError(
                "Dynamic client registration is not enabled", status_code=403
            )
        return config

    def _check_redirect_uris(self, uris: list[str] | None) -> list[str]:
        if not uris:
            raise InvalidRedirectURIError("redirect_uris is required and must be a non-empty array")
        for uri in uris:
            validate_redirect_uri(uri)
        return uris

    def _check_grants(self, grants: list[str], config: OAuthServerConfig) -> list[str]:
        allowed = config.dynamic_registration.allowed_grant_types
        for grant in grants:
            if grant not in allowed:
                raise InvalidClientMetadataError(f"Grant type not allowed: {grant}")
        return grants

    def _check_scopes(self, scope: str, config: OAuthServerConfig) -> list[str]:
        scopes = scope.split()
        for s in scopes:
            if s not in config.allowed_scopes:
                raise InvalidClientMetadataError(f"Scope not allowed: {s}")
        return scopes

    async def register(
        self,
        body: Mapping[str, Any],
        base_url: str,
        principal: Principal | None = None,
    ) -> dict[str, Any]:
        """Register a new client and return the RFC 7591 §3.2.1 response."""
        config = await self._registration_config()
        if config.dynamic_registration.requires_authentication and principal is None:
            raise InvalidTokenError("Authentication required for client registration")

        meta = _parse_metadata(body)
        redirect_uris = self._check_redirect_uris(meta.redirect_uris)
        grants = self._check_grants(
            meta.grant_types or ["authorization_code", "refresh_token"], config
        )
        scopes = self._check_scopes(meta.scope or "read write", config)

        auth_method = meta.token_endpoint_auth_method or "client_secret_basic"
        client = OAuthClient(
            client_id=secrets.token_hex(16),
            client_secret=secrets.token_hex(32) if auth_method != "none" else None,
            name=meta.client_name or DEFAULT_CLIENT_NAME,
            redirect_uris=redirect_uris,
            grants=grants,
            scopes=scopes,
            owner=DYNAMIC_OWNER,
            metadata={
                "application_type": meta.application_type or "web",
                "contacts": meta.contacts,
                "logo_uri": meta.logo_uri,
                "client_uri": meta.client_uri,
                "policy_uri": meta.policy_uri,
                "tos_uri": meta.tos_uri,
                "jwks_uri": meta.jwks_uri,
                "jwks": meta.jwks,
                "token_endpoint_auth_method": auth_method,
                "response_types": meta.response_types or ["code"],
            },
        )
        try:
            await self.clients.create_client(client)
        except ValueError:
            raise InvalidClientMetadataError("Client with this ID already exists") from None

        reg_token = RegistrationToken(token=secrets.token_hex(32), client_id=client.client_id)
        await self.registration_tokens.save_registration_token(reg_token)
        logger.info("Dynamically registered OAuth client %s (%s)", client.client_id, client.name)

        response = client_configuration(client)
        response.update(
            registration_access_token=reg_token.token,
            registration_client_uri=f"{base_url}/oauth/register/{client.client_id}",
            client_id_issued_at=int(time.time()),
        )
        if client.client_secret:
            response["client_secret"] = client.client_secret
            response["client_secret_expires_at"] = 0
        return response

    async def _authorize(self, client_id: str, token: str | None) -> RegistrationToken:
        if not token:
            raise InvalidTokenError("Registration access token required")
        record = await self.registration_tokens.get_registration_token(token)
        if record is not None and record.is_expired():
            await self.registration_tokens.delete_registration_token(token)
            logger.info("Expired registration token for client %s removed", record.client_id)
            record = None
        if record is None or record.client_id != client_id:
            raise InvalidTokenError("Invalid or expired registration access token")
        return record

    async def _require_client(self, client_id: str) -> OAuthClient:
        client = await self.clients.get_client(client_id)
        if client is None:
            raise InvalidClientError("Client not found", status_code=404)
        return client

    async def get_configuration(self, client_id: str, token: str | None) -> dict[str, Any]:
        await self._authorize(client_id, token)
        return client_configuration(await self._require_client(client_id))

    async def update_configuration(
        self, client_id: str, token: str | None, body: Mapping[str, Any]
    ) -> dict[str, Any]:
        await self._authorize(client_id, token)
        client = await self._require_client(client_id)
        config = (await self.config_reader.get_system_config()).oauth_server
        meta = _parse_metadata(body)

        updates: dict[str, Any] = {}
        if meta.redirect_uris is not None:
            updates["redirect_uris"] = self._check_redirect_uris(meta.redirect_uris)
        if meta.grant_types:
            updates["grants"] = self._check_grants(meta.grant_types, config)
        if meta.scope:
            updates["scopes"] = self._check_scopes(meta.scope, config)
        if meta.client_name:
            updates["name"] = meta.client_name

        merged = dict(client.metadata)
        for key in _UPDATABLE_METADATA:
            value = getattr(meta, key)
            if value is not None:
                merged[key] = value
        updates["metadata"] = merged

        updated = await self.clients.update_client(client_id, updates)
        if updated is None:
            raise InvalidClientError("Client not found", status_code=404)
        logger.info("Updated registration of OAuth client %s", client_id)
        return client_configuration(updated)

    async def delete_registration(self, client_id: str, token: str | None) -> None:
        reg_token = await self._authorize(client_id, token)
        if not await self.clients.delete_client(client_id):
            raise InvalidClientError("Client not found", status_code=404)
        await self.registration_tokens.delete_registration_token(reg_token.token)
        logger.info("Deleted registration of OAuth client %s", client_id)


# Singleton
_service: DynamicRegistrationService | None = None


def get_registration_service() -> DynamicRegistrationService:
    global _service
    if _service is None:
        _service = DynamicRegistrationService()
    return _service


def reset_registration_service() -> None:
    global _service
    _service = None
