# OAuth2 data models.
# Created: 2026-10-12

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

REGISTRATION_TOKEN_TTL = timedelta(days=30)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


@dataclass
class OAuthClient:
    """Registered OAuth2 client (admin-created or dynamically registered)."""

    client_id: str
    name: str
    redirect_uris: list[str] = field(default_factory=list)
    client_secret: str | None = None
    grants: list[str] = field(default_factory=lambda: ["authorization_code", "refresh_token"])
    scopes: list[str] = field(default_factory=lambda: ["read", "write"])
    owner: str = "admin"
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def token_endpoint_auth_method(self) -> str:
        declared = self.metadata.get("token_endpoint_auth_method")
        if declared:
            return declared
        return "client_secret_basic" if self.client_secret else "none"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OAuthClient:
        return cls(
            client_id=data["client_id"],
            name=data.get("name", ""),
            redirect_uris=list(data.get("redirect_uris", [])),
            client_secret=data.get("client_secret"),
            grants=list(data.get("grants", ["authorization_code", "refresh_token"])),
            scopes=list(data.get("scopes", ["read", "write"])),
            owner=data.get("owner", "admin"),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class AuthorizationCode:
    """Single-use authorization code, bound to client, redirect URI and principal."""

    code: str
    client_id: str
    redirect_uri: str
    scope: str
    username: str
    expires_at: datetime
    code_challenge: str | None = None
    code_challenge_method: str | None = None  # "S256" | "plain"

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or _utcnow()) >= self.expires_at


@dataclass
class OAuthToken:
    """OAuth2 access token with optional refresh token."""

    access_token: str
    access_token_expires_at: datetime
    client_id: str
    username: str
    scope: str
    refresh_token: str | None = None
    refresh_token_expires_at: datetime | None = None

    def access_expired(self, now: datetime | None = None) -> bool:
        return (now or _utcnow()) >= self.access_token_expires_at

    def refresh_expired(self, now: datetime | None = None) -> bool:
        if self.refresh_token_expires_at is None:
            return False
        return (now or _utcnow()) >= self.refresh_token_expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "access_token": self.access_token,
            "access_token_expires_at": self.access_token_expires_at.isoformat(),
            "client_id": self.client_id,
            "username": self.username,
            "scope": self.scope,
            "refresh_token": self.refresh_token,
            "refresh_token_expires_at": self.refresh_token_expires_at.isoformat()
            if self.refresh_token_expires_at
            else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OAuthToken:
        return cls(
            access_token=data["access_token"],
            access_token_expires_at=datetime.fromisoformat(data["access_token_expires_at"]),
            client_id=data["client_id"],
            username=data["username"],
            scope=data.get("scope", ""),
            refresh_token=data.get("refresh_token"),
            refresh_token_expires_at=_parse_dt(data.get("refresh_token_expires_at")),
        )


@dataclass
class RegistrationToken:
    """Bearer credential for managing one dynamically registered client."""

    token: str
    client_id: str
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def expires_at(self) -> datetime:
        return self.created_at + REGISTRATION_TOKEN_TTL

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or _utcnow()) >= self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "token": self.token,
            "client_id": self.client_id,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RegistrationToken:
        return cls(
            token=data["token"],
            client_id=data["client_id"],
            created_at=datetime.fromisoformat(data["created_at"]),
        )


@dataclass
class UserRecord:
    username: str
    is_admin: bool = False
