"""Request authentication for the hub: the precedence chain and its middleware.

Contains:
- ``Credentials`` - the raw credentials a request carries
- the authenticator strategies, tried in order:
  ``SkipAuthAuthenticator`` -> ``BearerKeyAuthenticator`` ->
  ``OAuthTokenAuthenticator`` -> ``SessionTokenAuthenticator``
- ``AuthenticationChain`` - runs the strategies, first decision wins
- ``auth_middleware()`` - HTTP middleware (registered by api/serve.py)

Each strategy returns ``NO_MATCH`` to defer to the next one, ``admit`` with a
principal, or a terminal ``reject``.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from fastapi import Request
from fastapi.responses import JSONResponse

from mcphub.config import Settings, SystemConfig, SystemConfigReader, get_system_config_reader
from mcphub.security.principal import Principal
from mcphub.security.rate_limiter import get_limiter_for_path
from mcphub.security.session_tokens import verify_session_token

if TYPE_CHECKING:
    from mcphub.api.bearer_keys import BearerKeyStore
    from mcphub.api.oauth2.storage import TokenStore, UserStore

logger = logging.getLogger(__name__)

NO_TOKEN_MESSAGE = "No token, authorization denied"
INVALID_TOKEN_MESSAGE = "Token is not valid"
READONLY_MESSAGE = "Operation not allowed in readonly mode"

_SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})
_READONLY_ALLOW_PATHS = ("/tools/call/",)
_PUBLIC_PREFIXES = ("/oauth", "/.well-known", "/health")


# ---------------------------------------------------------------------------
# Decisions and credentials
# ---------------------------------------------------------------------------


class Verdict(enum.Enum):
    NO_MATCH = "no_match"
    ADMIT = "admit"
    REJECT = "reject"


@dataclass(frozen=True)
class AuthDecision:
    verdict: Verdict
    principal: Principal | None = None
    status_code: int = 401
    message: str = ""

    @classmethod
    def admit(cls, principal: Principal | None) -> AuthDecision:
        return cls(Verdict.ADMIT, principal=principal)

    @classmethod
    def reject(cls, status_code: int, message: str) -> AuthDecision:
        return cls(Verdict.REJECT, status_code=status_code, message=message)

    @property
    def admitted(self) -> bool:
        return self.verdict is Verdict.ADMIT


NO_MATCH = AuthDecision(Verdict.NO_MATCH)


def bearer_token(authorization: str | None) -> str | None:
    """Extract the credential from an ``Authorization: Bearer`` header."""
    if not authorization or not authorization.startswith("Bearer "):
        return None
    return authorization[7:].strip() or None


@dataclass(frozen=True)
class Credentials:
    bearer: str | None = None
    header_token: str | None = None  # x-auth-token
    query_token: str | None = None

    @classmethod
    def from_request(cls, request: Request) -> Credentials:
        return cls(
            bearer=bearer_token(request.headers.get("Authorization")),
            header_token=request.headers.get("x-auth-token") or None,
            query_token=request.query_params.get("token") or None,
        )

    @property
    def present(self) -> bool:
        return bool(self.bearer or self.header_token or self.query_token)


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


class Authenticator(Protocol):
    name: str

    async def authenticate(self, creds: Credentials, config: SystemConfig) -> AuthDecision: ...


class SkipAuthAuthenticator:
    """``routing.skipAuth`` admits every request without a principal."""

    name = "skip_auth"

    async def authenticate(self, creds: Credentials, config: SystemConfig) -> AuthDecision:
        if config.routing.skip_auth:
            return AuthDecision.admit(None)
        return NO_MATCH


class BearerKeyAuthenticator:
    name = "bearer_key"

    def __init__(self, keys: BearerKeyStore | None = None):
        self._keys = keys

    @property
    def keys(self) -> BearerKeyStore:
        if self._keys is None:
            from mcphub.api.bearer_keys import get_bearer_key_manager

            return get_bearer_key_manager()
        return self._keys

    async def authenticate(self, creds: Credentials, config: SystemConfig) -> AuthDecision:
        if not creds.bearer:
            return NO_MATCH
        record = await self.keys.find_enabled_by_token(creds.bearer)
        if record is None:
            return NO_MATCH
        return AuthDecision.admit(
            Principal(
                username=f"bearer-key:{record.name}",
                is_admin=record.access_type == "all",
                auth_method="bearer_key",
                bearer_key=record,
            )
        )


class OAuthTokenAuthenticator:
    """OAuth access tokens. An expired token is rejected outright."""

    name = "oauth_token"

    def __init__(self, tokens: TokenStore | None = None, users: UserStore | None = None):
        self._tokens = tokens
        self._users = users

    def _stores(self) -> tuple[TokenStore, UserStore]:
        if self._tokens is None or self._users is None:
            from mcphub.api.oauth2.storage import get_oauth_storage

            storage = get_oauth_storage()
            return self._tokens or storage, self._users or storage
        return self._tokens, self._users

    async def authenticate(self, creds: Credentials, config: SystemConfig) -> AuthDecision:
        if not creds.bearer or not config.oauth_server.enabled:
            return NO_MATCH
        tokens, users = self._stores()
        token = await tokens.get_token(creds.bearer)
        if token is None:
            return NO_MATCH
        if token.access_expired():
            logger.debug("Expired OAuth access token for user %s", token.username)
            return AuthDecision.reject(401, INVALID_TOKEN_MESSAGE)

        user = await users.get_user(token.username)
        return AuthDecision.admit(
            Principal(
                username=token.username,
                is_admin=bool(user and user.is_admin),
                auth_method="oauth",
                scope=token.scope,
            )
        )


class SessionTokenAuthenticator:
    """Session JWTs from ``x-auth-token``, the ``token`` query param, then Bearer."""

    name = "session_token"

    def __init__(self, secret: str | None = None):
        self._secret = secret

    @property
    def secret(self) -> str:
        if self._secret is None:
            from mcphub.config import get_jwt_secret

            self._secret = get_jwt_secret()
        return self._secret

    async def authenticate(self, creds: Credentials, config: SystemConfig) -> AuthDecision:
        for candidate in (creds.header_token, creds.query_token, creds.bearer):
            if not candidate:
                continue
            result = verify_session_token(candidate, self.secret)
            if result.ok:
                return AuthDecision.admit(result.principal)
            logger.debug("Session credential not accepted: %s", result.error)
        return NO_MATCH


def default_authenticators() -> list[Authenticator]:
    return [
        SkipAuthAuthenticator(),
        BearerKeyAuthenticator(),
        OAuthTokenAuthenticator(),
        SessionTokenAuthenticator(),
    ]


class AuthenticationChain:
    def __init__(
        self,
        authenticators: list[Authenticator] | None = None,
        config_reader: SystemConfigReader | None = None,
    ):
        self.authenticators = (
            authenticators if authenticators is not None else default_authenticators()
        )
        self._config_reader = config_reader

    @property
    def names(self) -> list[str]:
        return [a.name for a in self.authenticators]

    async def authenticate(self, creds: Credentials) -> AuthDecision:
        reader = self._config_reader or get_system_config_reader()
        config = await reader.get_system_config()
        for authenticator in self.authenticators:
            decision = await authenticator.authenticate(creds, config)
            if decision.verdict is not Verdict.NO_MATCH:
                return decision
        if not creds.present:
            return AuthDecision.reject(401, NO_TOKEN_MESSAGE)
        return AuthDecision.reject(401, INVALID_TOKEN_MESSAGE)

    async def authenticate_request(self, request: Request) -> AuthDecision:
        return await self.authenticate(Credentials.from_request(request))


# Singleton
_chain: AuthenticationChain | None = None


def get_auth_chain() -> AuthenticationChain:
    global _chain
    if _chain is None:
        _chain = AuthenticationChain()
    return _chain


def reset_auth_chain() -> None:
    global _chain
    _chain = None


# ---------------------------------------------------------------------------
# HTTP middleware
# ---------------------------------------------------------------------------


def readonly_blocks(method: str, path: str, settings: Settings) -> bool:
    """True when readonly mode forbids *method* on *path*."""
    if not settings.readonly or method.upper() in _SAFE_METHODS:
        return False
    prefixes = (settings.base_path, f"{settings.base_path}/api")
    return not any(path.startswith(pre + p) for pre in prefixes for p in _READONLY_ALLOW_PATHS)


def _is_public(path: str) -> bool:
    return any(path == p or path.startswith(p + "/") for p in _PUBLIC_PREFIXES)


def _is_protected(path: str, base_path: str) -> bool:
    prefix = f"{base_path}/api"
    return path == prefix or path.startswith(prefix + "/")


async def auth_middleware(request: Request, call_next):
    settings = Settings.load()
    path = request.url.path
    request.state.principal = None
    request.state.auth_skipped = False

    if _is_public(path):
        limiter = get_limiter_for_path(path)
        if limiter is not None:
            client_ip = request.client.host if request.client else "unknown"
            rl_info = limiter.check(client_ip)
            if not rl_info.allowed:
                return JSONResponse(
                    status_code=429,
                    content={"detail": "Too many requests"},
                    headers=rl_info.headers(),
                )
        # Optional here: the endpoint decides what an anonymous caller gets.
        decision = await get_auth_chain().authenticate_request(request)
        if decision.admitted:
            request.state.principal = decision.principal
        return await call_next(request)

    if not _is_protected(path, settings.base_path):
        return await call_next(request)

    if readonly_blocks(request.method, path, settings):
        return JSONResponse(
            status_code=403, content={"success": False, "message": READONLY_MESSAGE}
        )

    decision = await get_auth_chain().authenticate_request(request)
    if not decision.admitted:
        return JSONResponse(
            status_code=decision.status_code,
            content={"success": False, "message": decision.message},
        )

    request.state.principal = decision.principal
    request.state.auth_skipped = decision.principal is None
    return await call_next(request)
