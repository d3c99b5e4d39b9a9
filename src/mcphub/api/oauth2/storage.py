# OAuth2 store contracts and the file-backed reference implementation.
# Created: 2026-10-12
#
# The auth core only talks to the Protocols below. OAuthStorage implements all
# of them on JSON files in the config dir. Suits a single instance.
# Authorization codes stay in memory (short-lived); clients, tokens,
# registration tokens and users survive restarts.

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import replace
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol

from mcphub.api.oauth2.models import (
    AuthorizationCode,
    OAuthClient,
    OAuthToken,
    RegistrationToken,
    UserRecord,
)

logger = logging.getLogger(__name__)

_CLIENT_FIELDS = {"name", "redirect_uris", "client_secret", "grants", "scopes", "owner", "metadata"}


class ClientStore(Protocol):
    async def get_client(self, client_id: str) -> OAuthClient | None: ...

    async def list_clients(self) -> list[OAuthClient]: ...

    async def create_client(self, client: OAuthClient) -> OAuthClient: ...

    async def update_client(
        self, client_id: str, updates: dict[str, Any]
    ) -> OAuthClient | None: ...

    async def delete_client(self, client_id: str) -> bool: ...


class TokenStore(Protocol):
    async def save_authorization_code(self, code: AuthorizationCode) -> None: ...

    async def get_authorization_code(self, code: str) -> AuthorizationCode | None: ...

    async def claim_authorization_code(self, code: str) -> AuthorizationCode | None:
        """Atomically remove and return the code; None if already gone."""
        ...

    async def save_token(self, token: OAuthToken) -> None: ...

    async def get_token(self, access_token: str) -> OAuthToken | None: ...

    async def get_token_by_refresh(self, refresh_token: str) -> OAuthToken | None: ...

    async def claim_refresh_token(self, refresh_token: str) -> OAuthToken | None:
        """Atomically remove and return the pair owning *refresh_token*."""
        ...

    async def revoke_token(self, token: str) -> bool: ...


class RegistrationTokenStore(Protocol):
    async def save_registration_token(self, token: RegistrationToken) -> None: ...

    async def get_registration_token(self, token: str) -> RegistrationToken | None: ...

    async def delete_registration_token(self, token: str) -> bool: ...


class UserStore(Protocol):
    async def get_user(self, username: str) -> UserRecord | None: ...


def _default_data_dir() -> Path:
    from mcphub.config import get_config_dir

    return get_config_dir()


class OAuthStorage:
    """File-backed ClientStore, TokenStore, RegistrationTokenStore and UserStore."""

    def __init__(self, data_dir: Path | None = None):
        self._data_dir = data_dir
        self._lock = asyncio.Lock()
        self._clients: dict[str, OAuthClient] = {}
        self._codes: dict[str, AuthorizationCode] = {}
        self._tokens: dict[str, OAuthToken] = {}  # keyed by access_token
        self._refresh_index: dict[str, str] = {}  # refresh_token → access_token
        self._registration_tokens: dict[str, RegistrationToken] = {}
        self._users: dict[str, UserRecord] = {}
        self._load()

    # -- persistence -------------------------------------------------------

    def _path(self, name: str) -> Path:
        base = self._data_dir if self._data_dir is not None else _default_data_dir()
        return base / name

    def _read_list(self, name: str) -> list[dict[str, Any]]:
        path = self._path(name)
        if not path.exists():
            return []
        try:
            data = json.loads(path.read_text())
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Failed to load %s: %s", path, exc)
            return []
        return data if isinstance(data, list) else []

    def _load(self) -> None:
        try:
            for entry in self._read_list("oauth_clients.json"):
                client = OAuthClient.from_dict(entry)
                self._clients[client.client_id] = client
            for entry in self._read_list("oauth_tokens.json"):
                token = OAuthToken.from_dict(entry)
                self._index_token(token)
            for entry in self._read_list("oauth_registration_tokens.json"):
                reg = RegistrationToken.from_dict(entry)
                self._registration_tokens[reg.token] = reg
            for entry in self._read_list("users.json"):
                user = UserRecord(username=entry["username"], is_admin=entry.get("is_admin", False))
                self._users[user.username] = user
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Ignoring malformed OAuth storage entry: %s", exc)
        logger.debug(
            "Loaded %d OAuth clients, %d tokens, %d users",
            len(self._clients),
            len(self._tokens),
            len(self._users),
        )

    def _write(self, name: str, data: list[dict[str, Any]]) -> None:
        path = self._path(name)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(json.dumps(data, indent=2))
        try:
            tmp.chmod(0o600)
        except OSError:
            pass
        tmp.replace(path)

    async def _save_clients(self) -> None:
        data = [c.to_dict() for c in self._clients.values()]
        await asyncio.to_thread(self._write, "oauth_clients.json", data)

    async def _save_tokens(self) -> None:
        data = [t.to_dict() for t in self._tokens.values()]
        await asyncio.to_thread(self._write, "oauth_tokens.json", data)

    async def _save_registration_tokens(self) -> None:
        data = [r.to_dict() for r in self._registration_tokens.values()]
        await asyncio.to_thread(self._write, "oauth_registration_tokens.json", data)

    async def _save_users(self) -> None:
        data = [{"username": u.username, "is_admin": u.is_admin} for u in self._users.values()]
        await asyncio.to_thread(self._write, "users.json", data)

    def _index_token(self, token: OAuthToken) -> None:
        self._tokens[token.access_token] = token
        if token.refresh_token:
            self._refresh_index[token.refresh_token] = token.access_token

    def _drop_token(self, access_token: str) -> OAuthToken | None:
        token = self._tokens.pop(access_token, None)
        if token and token.refresh_token:
            self._refresh_index.pop(token.refresh_token, None)
        return token

    # -- clients -----------------------------------------------------------

    async def get_client(self, client_id: str) -> OAuthClient | None:
        return self._clients.get(client_id)

    async def list_clients(self) -> list[OAuthClient]:
        return list(self._clients.values())

    async def create_client(self, client: OAuthClient) -> OAuthClient:
        async with self._lock:
            if client.client_id in self._clients:
                raise ValueError(f"OAuth client with ID {client.client_id} already exists")
            self._clients[client.client_id] = client
            await self._save_clients()
        return client

    async def update_client(
        self, client_id: str, updates: dict[str, Any]
    ) -> OAuthClient | None:
        unknown = set(updates) - _CLIENT_FIELDS
        if unknown:
            raise ValueError(f"Unknown client fields: {sorted(unknown)}")
        async with self._lock:
            current = self._clients.get(client_id)
            if current is None:
                return None
            updated = replace(current, **updates)
            self._clients[client_id] = updated
            await self._save_clients()
        return updated

    async def delete_client(self, client_id: str) -> bool:
        async with self._lock:
            if self._clients.pop(client_id, None) is None:
                return False
            await self._save_clients()
        return True

    # -- authorization codes (memory only) ---------------------------------

    async def save_authorization_code(self, code: AuthorizationCode) -> None:
        self._codes[code.code] = code

    async def get_authorization_code(self, code: str) -> AuthorizationCode | None:
        return self._codes.get(code)

    async def claim_authorization_code(self, code: str) -> AuthorizationCode | None:
        async with self._lock:
            return self._codes.pop(code, None)

    # -- tokens ------------------------------------------------------------

    async def save_token(self, token: OAuthToken) -> None:
        async with self._lock:
            self._index_token(token)
            await self._save_tokens()

    async def get_token(self, access_token: str) -> OAuthToken | None:
        return self._tokens.get(access_token)

    async def get_token_by_refresh(self, refresh_token: str) -> OAuthToken | None:
        access_token = self._refresh_index.get(refresh_token)
        if access_token is None:
            return None
        return self._tokens.get(access_token)

    async def claim_refresh_token(self, refresh_token: str) -> OAuthToken | None:
        async with self._lock:
            access_token = self._refresh_index.get(refresh_token)
            if access_token is None:
                return None
            token = self._drop_token(access_token)
            await self._save_tokens()
        return token

    async def revoke_token(self, token: str) -> bool:
        """Revoke the pair that *token* (access or refresh) belongs to."""
        async with self._lock:
            access_token = token if token in self._tokens else self._refresh_index.get(token)
            if access_token is None or self._drop_token(access_token) is None:
                return False
            await self._save_tokens()
        return True

    async def cleanup_expired(self) -> int:
        """Drop expired codes and fully expired token pairs. Returns count removed."""
        now = datetime.now(UTC)
        async with self._lock:
            expired_codes = [k for k, v in self._codes.items() if v.is_expired(now)]
            for k in expired_codes:
                del self._codes[k]

            expired_tokens = [
                k
                for k, t in self._tokens.items()
                if t.access_expired(now) and (not t.refresh_token or t.refresh_expired(now))
            ]
            for k in expired_tokens:
                self._drop_token(k)
            if expired_tokens:
                await self._save_tokens()
        return len(expired_codes) + len(expired_tokens)

    # -- registration tokens -----------------------------------------------

    async def save_registration_token(self, token: RegistrationToken) -> None:
        async with self._lock:
            self._registration_tokens[token.token] = token
            await self._save_registration_tokens()

    async def get_registration_token(self, token: str) -> RegistrationToken | None:
        return self._registration_tokens.get(token)

    async def delete_registration_token(self, token: str) -> bool:
        async with self._lock:
            if self._registration_tokens.pop(token, None) is None:
                return False
            await self._save_registration_tokens()
        return True

    # -- users -------------------------------------------------------------

    async def get_user(self, username: str) -> UserRecord | None:
        return self._users.get(username)

    async def save_user(self, user: UserRecord) -> None:
        async with self._lock:
            self._users[user.username] = user
            await self._save_users()


# Singleton
_storage: OAuthStorage | None = None


def get_oauth_storage() -> OAuthStorage:
    global _storage
    if _storage is None:
        _storage = OAuthStorage()
    return _storage


def reset_oauth_storage() -> None:
    global _storage
    _storage = None
