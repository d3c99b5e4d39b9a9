"""The identity attached to an authenticated request."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from mcphub.api.bearer_keys import BearerKeyRecord

__all__ = ["Principal"]


@dataclass(frozen=True)
class Principal:
    """Resolved identity: username + admin flag, plus how it was established."""

    username: str
    is_admin: bool = False
    auth_method: str = "session"  # "session" | "oauth" | "bearer_key"
    scope: str | None = None
    bearer_key: BearerKeyRecord | None = None

    def can_access_server(self, server_name: str, groups: list[str] | None = None) -> bool:
        """Apply a bearer key's allow-lists. Non-key principals are unrestricted here."""
        key = self.bearer_key
        if key is None or key.access_type == "all":
            return True
        in_servers = server_name in (key.allowed_servers or [])
        in_groups = bool(set(groups or []) & set(key.allowed_groups or []))
        if key.access_type == "servers":
            return in_servers
        if key.access_type == "groups":
            return in_groups
        # custom: either list grants access
        return in_servers or in_groups

    def to_dict(self) -> dict:
        return {
            "username": self.username,
            "isAdmin": self.is_admin,
            "authMethod": self.auth_method,
        }
