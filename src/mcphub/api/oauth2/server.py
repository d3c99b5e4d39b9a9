# OAuth2 Authorization Server: authorization codes, token exchange, PKCE.
# Created: 2026-10-12
#
# Implements the authorization code grant (RFC 6749 §4.1) with optional PKCE
# (RFC 7636, S256 and plain) and refresh token rotation. Every lookup and
# mutation goes through the ClientStore / TokenStore; single-use artifacts are
# consumed with the stores' atomic claim operations.

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import re
import secrets
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

from mcphub.api.oauth2.errors import (
    AccessDeniedError,
    InvalidClientError,
    InvalidGrantError,
    InvalidRequestError,
    InvalidScopeError,
    TemporarilyUnavailableError,
    UnauthorizedClientError,
    UnsupportedGrantTypeError,
)
from mcphub.api.oauth2.models import AuthorizationCode, OAuthClient, OAuthToken
from mcphub.api.oauth2.storage import ClientStore, TokenStore, UserStore, get_oauth_storage
from mcphub.config import OAuthServerConfig, SystemConfigReader, get_system_config_reader
from mcphub.security.principal import Principal

logger = logging.getLogger(__name__)

GRANT_TYPES = ("authorization_code", "refresh_token")
ACCESS_TOKEN_PREFIX = "mhat_"
REFRESH_TOKEN_PREFIX = "mhrt_"

_ID_PATTERN = re.compile(r"[A-Za-z0-9_-]+")
_SCOPE_PATTERN = re.compile(r"[A-Za-z0-9_:. -]+")
_RESPONSE_TYPE_PATTERN = re.compile(r"code")
_CHALLENGE_METHOD_PATTERN = re.compile(r"S256|plain")
_VERIFIER_PATTERN = re.compile(r"[A-Za-z0-9._~-]{43,128}")
# A plain challenge is the verifier itself; an S256 challenge is 43 characters.
_CHALLENGE_PATTERN = _VERIFIER_PATTERN


# ---------------------------------------------------------------------------
# PKCE
# ---------------------------------------------------------------------------


def compute_code_challenge(code_verifier: str) -> str:
    """S256: BASE64URL(SHA256(code_verifier)) without padding."""
    digest = hashlib.sha256(code_verifier.encode()).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode()


def verify_code_challenge(code_verifier: str, code_challenge: str, method: str = "S256") -> bool:
    if method == "plain":
        expected = code_verifier
    elif method == "S256":
        expected = compute_code_challenge(code_verifier)
    else:
        return False
    return hmac.compare_digest(expected.encode(), code_challenge.encode())


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AuthorizeRequest:
    client_id: str
    redirect_uri: str
    response_type: str
    scope: str | None = None
    state: str | None = None
    code_challenge: str | None = None
    code_challenge_method: str | None = None

    def as_params(self) -> dict[str, str]:
        """Non-empty parameters, for re-embedding in the consent form."""
        return {k: v for k, v in self.__dict__.items() if v}


def _param(params: Mapping[str, Any], name: str, pattern: re.Pattern | None = None) -> str | None:
    value = params.get(name)
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise InvalidRequestError(f"{name} must be a string")
    if pattern is not None and not pattern.fullmatch(value):
        raise InvalidRequestError(f"{name} has invalid format")
    return value


def validate_authorize_request(
    params: Mapping[str, Any], *, require_state: bool = False
) -> AuthorizeRequest:
    """Syntax-check authorize parameters. Raises InvalidRequestError."""
    request = AuthorizeRequest(
        client_id=_param(params, "client_id", _ID_PATTERN) or "",
        redirect_uri=_param(params, "redirect_uri") or "",
        response_type=_param(params, "response_type", _RESPONSE_TYPE_PATTERN) or "",
        scope=_param(params, "scope", _SCOPE_PATTERN),
        state=_param(params, "state", _ID_PATTERN),
        code_challenge=_param(params, "code_challenge", _CHALLENGE_PATTERN),
        code_challenge_method=_param(params, "code_challenge_method", _CHALLENGE_METHOD_PATTERN),
    )
    if not (request.client_id and request.redirect_uri and request.response_type):
        raise InvalidRequestError("Missing required parameters")
    if request.code_challenge_method and not request.code_challenge:
        raise InvalidRequestError("code_challenge_method requires code_challenge")
    if require_state and not request.state:
        raise InvalidRequestError("Missing parameter: state")
    return request


@dataclass(frozen=True)
class TokenRequest:
    grant_type: str | None
    client_id: str | None = None
    client_secret: str | None = None
    code: str | None = None
    redirect_uri: str | None = None
    code_verifier: str | None = None
    refresh_token: str | None = None
    scope: str | None = None
    basic_auth: bool = False


class PrincipalResolver(Protocol):
    """Supplies the end user on whose behalf a code is issued."""

    async def resolve_principal(self) -> Principal | None: ...


class StaticPrincipalResolver:
    def __init__(self, principal: Principal | None):
        self.principal = principal

    async def resolve_principal(self) -> Principal | None:
        return self.principal


def token_response(token: OAuthToken) -> dict[str, Any]:
    """RFC 6749 §5.1 body; expires_in is computed now and never negative."""
    remaining = (token.access_token_expires_at - datetime.now(UTC)).total_seconds()
    body: dict[str, Any] = {
        "access_token": token.access_token,
        "token_type": "Bearer",
        "expires_in": max(0, int(remaining)),
        "scope": token.scope,
    }
    if token.refresh_token:
        body["refresh_token"] = token.refresh_token
    return body


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------


class AuthorizationServer:
    """Authorization and token endpoints' engine."""

    def __init__(
        self,
        storage=None,
        config_reader: SystemConfigReader | None = None,
        *,
        clients: ClientStore | None = None,
        tokens: TokenStore | None = None,
        users: UserStore | None = None,
    ):
        if storage is None and None in (clients, tokens, users):
            storage = get_oauth_storage()
        self.clients: ClientStore = clients or storage
        self.tokens: TokenStore = tokens or storage
        self.users: UserStore = users or storage
        self.config_reader = config_reader or get_system_config_reader()

    async def get_config(self) -> OAuthServerConfig:
        return (await self.config_reader.get_system_config()).oauth_server

    async def _require_enabled(self) -> OAuthServerConfig:
        config = await self.get_config()
        if not config.enabled:
            raise TemporarilyUnavailableError("OAuth server not available")
        return config

    # -- authorization ------------------------------------------------------

    async def check_client_redirect(self, client_id: str, redirect_uri: str) -> OAuthClient:
        """Return the client if *redirect_uri* is one of its registered URIs."""
        client = await self.clients.get_client(client_id)
        if client is None:
            raise InvalidClientError("Client not found")
        if redirect_uri not in client.redirect_uris:
            raise InvalidRequestError("Invalid redirect_uri")
        return client

    def _resolve_scope(
        self, requested: str | None, client: OAuthClient, config: OAuthServerConfig
    ) -> str:
        allowed = [s for s in config.allowed_scopes if s in client.scopes]
        if not requested:
            if not allowed:
                raise InvalidScopeError("Client has no allowed scopes")
            return " ".join(allowed)

        granted: list[str] = []
        for s in requested.split():
            if s in allowed and s not in granted:
                granted.append(s)
        if not granted:
            raise InvalidScopeError("Requested scope is invalid")
        return " ".join(granted)

    async def issue_authorization_code(
        self, request: AuthorizeRequest, resolver: PrincipalResolver
    ) -> AuthorizationCode:
        """Bind a new single-use code to principal, client, redirect URI, scope and PKCE."""
        config = await self._require_enabled()
        client = await self.check_client_redirect(request.client_id, request.redirect_uri)
        if "authorization_code" not in client.grants:
            raise UnauthorizedClientError("Client is not allowed the authorization_code grant")
        scope = self._resolve_scope(request.scope, client, config)

        principal = await resolver.resolve_principal()
        if principal is None:
            raise AccessDeniedError("User not authenticated", status_code=401)

        method = request.code_challenge_method
        if request.code_challenge and not method:
            method = "plain"

        code = AuthorizationCode(
            code=secrets.token_urlsafe(32),
            client_id=client.client_id,
            redirect_uri=request.redirect_uri,
            scope=scope,
            username=principal.username,
            expires_at=datetime.now(UTC) + timedelta(seconds=config.authorization_code_lifetime),
            code_challenge=request.code_challenge,
            code_challenge_method=method if request.code_challenge else None,
        )
        await self.tokens.save_authorization_code(code)
        logger.info(
            "Issued authorization code for client %s, user %s", client.client_id, principal.username
        )
        return code

    # -- token endpoint -----------------------------------------------------

    async def authenticate_client(
        self, request: TokenRequest, config: OAuthServerConfig
    ) -> OAuthClient:
        status = 401 if request.basic_auth else None
        if not request.client_id:
            raise InvalidClientError("Missing parameter: client_id", status_code=status)

        client = await self.clients.get_client(request.client_id)
        if client is None:
            raise InvalidClientError("Invalid client: client is invalid", status_code=status)

        if request.client_secret:
            if not client.client_secret or not hmac.compare_digest(
                client.client_secret.encode(), request.client_secret.encode()
            ):
                raise InvalidClientError("Invalid client: client is invalid", status_code=status)
        elif client.token_endpoint_auth_method != "none" or config.require_client_secret:
            raise InvalidClientError("Client authentication required", status_code=status)
        return client

    async def exchange_token(self, request: TokenRequest) -> OAuthToken:
        config = await self._require_enabled()
        if not request.grant_type:
            raise InvalidRequestError("Missing parameter: grant_type")
        if request.grant_type not in GRANT_TYPES:
            raise UnsupportedGrantTypeError(f"Unsupported grant type: {request.grant_type}")

        client = await self.authenticate_client(request, config)
        if request.grant_type not in client.grants:
            raise UnauthorizedClientError(f"Client is not allowed the {request.grant_type} grant")

        if request.grant_type == "authorization_code":
            return await self._exchange_code(request, client, config)
        return await self._exchange_refresh(request, client, config)

    async def _exchange_code(
        self, request: TokenRequest, client: OAuthClient, config: OAuthServerConfig
    ) -> OAuthToken:
        if not request.code:
            raise InvalidRequestError("Missing parameter: code")

        code = await self.tokens.get_authorization_code(request.code)
        if code is None or code.client_id != client.client_id:
            raise InvalidGrantError("Authorization code is invalid")
        if code.is_expired():
            await self.tokens.claim_authorization_code(request.code)
            raise InvalidGrantError("Authorization code has expired")
        if request.redirect_uri != code.redirect_uri:
            raise InvalidGrantError("redirect_uri does not match the authorization request")

        if code.code_challenge:
            verifier = request.code_verifier
            if not verifier:
                raise InvalidGrantError("Missing parameter: code_verifier")
            if not _VERIFIER_PATTERN.fullmatch(verifier):
                raise InvalidRequestError("code_verifier has invalid format")
            if not verify_code_challenge(
                verifier, code.code_challenge, code.code_challenge_method or "plain"
            ):
                raise InvalidGrantError("Code verifier is invalid")

        claimed = await self.tokens.claim_authorization_code(request.code)
        if claimed is None:
            raise InvalidGrantError("Authorization code has already been used")

        return await self._mint_token(client, claimed.username, claimed.scope, config)

    async def _exchange_refresh(
        self, request: TokenRequest, client: OAuthClient, config: OAuthServerConfig
    ) -> OAuthToken:
        if not request.refresh_token:
            raise InvalidRequestError("Missing parameter: refresh_token")

        old = await self.tokens.get_token_by_refresh(request.refresh_token)
        if old is None or old.client_id != client.client_id:
            raise InvalidGrantError("Refresh token is invalid")
        if old.refresh_expired():
            raise InvalidGrantError("Refresh token has expired")

        scope = old.scope
        if request.scope:
            requested = request.scope.split()
            if not set(requested) <= set(old.scope.split()):
                raise InvalidScopeError("Requested scope exceeds the original grant")
            scope = " ".join(requested)

        claimed = await self.tokens.claim_refresh_token(request.refresh_token)
        if claimed is None:
            raise InvalidGrantError("Refresh token has already been used")

        return await self._mint_token(client, claimed.username, scope, config)

    async def _mint_token(
        self, client: OAuthClient, username: str, scope: str, config: OAuthServerConfig
    ) -> OAuthToken:
        now = datetime.now(UTC)
        token = OAuthToken(
            access_token=f"{ACCESS_TOKEN_PREFIX}{secrets.token_urlsafe(32)}",
            access_token_expires_at=now + timedelta(seconds=config.access_token_lifetime),
            client_id=client.client_id,
            username=username,
            scope=scope,
        )
        if "refresh_token" in client.grants:
            token.refresh_token = f"{REFRESH_TOKEN_PREFIX}{secrets.token_urlsafe(32)}"
            token.refresh_token_expires_at = now + timedelta(seconds=config.refresh_token_lifetime)

        await self.tokens.save_token(token)
        logger.info("Issued access token for client %s, user %s", client.client_id, username)
        return token

    # -- resource side ------------------------------------------------------

    async def verify_access_token(self, access_token: str) -> OAuthToken | None:
        """Return the token record if it exists and has not expired."""
        token = await self.tokens.get_token(access_token)
        if token is None or token.access_expired():
            return None
        return token

    async def revoke(self, token: str) -> bool:
        """Revoke the access/refresh pair *token* belongs to."""
        revoked = await self.tokens.revoke_token(token)
        if revoked:
            logger.info("OAuth token revoked")
        return revoked


# Singleton
_server: AuthorizationServer | None = None


def get_oauth_server() -> AuthorizationServer:
    global _server
    if _server is None:
        _server = AuthorizationServer()
    return _server


def reset_oauth_server() -> None:
    global _server
    _server = None
