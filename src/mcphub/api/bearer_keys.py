# Bearer keys: static shared-secret credentials with scoped access.
# Created: 2026-10-12
#
# Unlike OAuth tokens these never expire; an admin enables/disables them and
# restricts them to groups or servers via access_type + allow-lists.
# Storage: <config_dir>/bearer_keys.json

from __future__ import annotations

import asyncio
import hmac
import json
import logging
import secrets
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import Literal, Protocol

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

AccessType = Literal["all", "groups", "servers", "custom"]

_TOKEN_BYTES = 32


class BearerKeyRecord(BaseModel):
    """Stored bearer key."""

    id: str
    name: str
    token: str
    enabled: bool = True
    access_type: AccessType = "all"
    allowed_groups: list[str] = Field(default_factory=list)
    allowed_servers: list[str] = Field(default_factory=list)
    created_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    updated_at: str | None = None


class BearerKeyStore(Protocol):
    async def find_enabled_by_token(self, token: str) -> BearerKeyRecord | None: ...


class BearerKeyManager:
    """File-backed bearer key store with admin CRUD."""

    def __init__(self, storage_path: Path | None = None):
        if storage_path is None:
            from mcphub.config import get_config_dir

            storage_path = get_config_dir() / "bearer_keys.json"
        self._path = storage_path
        self._lock = asyncio.Lock()

    def _load(self) -> list[BearerKeyRecord]:
        if not self._path.exists():
            return []
        try:
            return [BearerKeyRecord(**r) for r in json.loads(self._path.read_text())]
        except (json.JSONDecodeError, OSError, TypeError, ValueError) as exc:
            logger.warning("Failed to load bearer keys from %s: %s", self._path, exc)
            return []

    def _save(self, records: list[BearerKeyRecord]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps([r.model_dump() for r in records], indent=2))
        try:
            self._path.chmod(0o600)
        except OSError:
            pass

    async def list_keys(self) -> list[BearerKeyRecord]:
        return await asyncio.to_thread(self._load)

    async def get(self, key_id: str) -> BearerKeyRecord | None:
        for rec in await self.list_keys():
            if rec.id == key_id:
                return rec
        return None

    async def find_enabled_by_token(self, token: str) -> BearerKeyRecord | None:
        """Return the enabled key whose token equals *token*."""
        if not token:
            return None
        match = None
        for rec in await self.list_keys():
            # Compare against every key so timing does not reveal position.
            if rec.enabled and hmac.compare_digest(rec.token.encode(), token.encode()):
                match = rec
        return match

    async def create(
        self,
        name: str,
        token: str | None = None,
        access_type: AccessType = "all",
        allowed_groups: list[str] | None = None,
        allowed_servers: list[str] | None = None,
        enabled: bool = True,
    ) -> BearerKeyRecord:
        record = BearerKeyRecord(
            id=str(uuid.uuid4()),
            name=name,
            token=token or secrets.token_urlsafe(_TOKEN_BYTES),
            enabled=enabled,
            access_type=access_type,
            allowed_groups=allowed_groups or [],
            allowed_servers=allowed_servers or [],
        )
        async with self._lock:
            records = await asyncio.to_thread(self._load)
            records.append(record)
            await asyncio.to_thread(self._save, records)
        logger.info("Bearer key created: %s (%s)", record.name, record.access_type)
        return record

    async def update(self, key_id: str, **changes) -> BearerKeyRecord | None:
        changes = {k: v for k, v in changes.items() if v is not None}
        async with self._lock:
            records = await asyncio.to_thread(self._load)
            for i, rec in enumerate(records):
                if rec.id == key_id:
                    updated = rec.model_copy(
                        update={**changes, "updated_at": datetime.now(UTC).isoformat()}
                    )
                    records[i] = BearerKeyRecord.model_validate(updated.model_dump())
                    await asyncio.to_thread(self._save, records)
                    return records[i]
        return None

    async def delete(self, key_id: str) -> bool:
        async with self._lock:
            records = await asyncio.to_thread(self._load)
            remaining = [r for r in records if r.id != key_id]
            if len(remaining) == len(records):
                return False
            await asyncio.to_thread(self._save, remaining)
        logger.info("Bearer key deleted: %s", key_id)
        return True


# Singleton
_manager: BearerKeyManager | None = None


def get_bearer_key_manager() -> BearerKeyManager:
    global _manager
    if _manager is None:
        _manager = BearerKeyManager()
    return _manager


def reset_bearer_key_manager() -> None:
    """Reset singleton (for testing)."""
    global _manager
    _manager = None
