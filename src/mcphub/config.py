"""Configuration for the MCPHub auth core.

Two layers:

- ``Settings``: process settings from the environment (``MCPHUB_*``), loaded
  with pydantic-settings.
- ``SystemConfig``: the hub's ``systemConfig`` block (routing, OAuth server,
  install URL), read through a ``SystemConfigReader`` on every request so that
  admin edits take effect without a restart.
"""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_SCOPES = ["read", "write"]
DEFAULT_GRANT_TYPES = ["authorization_code", "refresh_token"]


class Settings(BaseSettings):
    """Process-level settings (environment / .env)."""

    model_config = SettingsConfigDict(env_prefix="MCPHUB_", env_file=".env", extra="ignore")

    config_dir: Path = Field(default_factory=lambda: Path.home() / ".mcphub")
    settings_file: str = "mcp_settings.json"
    jwt_secret: str | None = None
    session_token_ttl_hours: int = 24
    readonly: bool = False
    base_path: str = ""
    host: str = "127.0.0.1"
    port: int = 3000
    log_level: str = "INFO"
    auth_rate_per_minute: int = 60

    @classmethod
    def load(cls) -> Settings:
        return cls()


def get_config_dir() -> Path:
    path = Settings.load().config_dir
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_jwt_secret() -> str:
    """Return the session JWT signing secret.

    ``MCPHUB_JWT_SECRET`` wins; otherwise a random secret is generated once and
    kept in ``<config_dir>/.jwt_secret`` so sessions survive restarts.
    """
    settings = Settings.load()
    if settings.jwt_secret:
        return settings.jwt_secret

    path = get_config_dir() / ".jwt_secret"
    if path.exists():
        secret = path.read_text().strip()
        if secret:
            return secret

    secret = secrets.token_urlsafe(48)
    path.write_text(secret)
    try:
        path.chmod(0o600)
    except OSError:
        pass
    logger.info("Generated new session signing secret at %s", path)
    return secret


# ---------------------------------------------------------------------------
# System config (camelCase JSON, snake_case attributes)
# ---------------------------------------------------------------------------


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RoutingConfig(_CamelModel):
    skip_auth: bool = False


class DynamicRegistrationConfig(_CamelModel):
    enabled: bool = True
    allowed_grant_types: list[str] = Field(default_factory=lambda: list(DEFAULT_GRANT_TYPES))
    requires_authentication: bool = False


class OAuthServerConfig(_CamelModel):
    enabled: bool = True
    access_token_lifetime: int = 3600
    refresh_token_lifetime: int = 1209600
    authorization_code_lifetime: int = 300
    require_client_secret: bool = False
    require_state: bool = False
    allowed_scopes: list[str] = Field(default_factory=lambda: list(DEFAULT_SCOPES))
    dynamic_registration: DynamicRegistrationConfig = Field(
        default_factory=DynamicRegistrationConfig
    )


class InstallConfig(_CamelModel):
    base_url: str | None = None


class SystemConfig(_CamelModel):
    routing: RoutingConfig = Field(default_factory=RoutingConfig)
    oauth_server: OAuthServerConfig = Field(default_factory=OAuthServerConfig)
    install: InstallConfig = Field(default_factory=InstallConfig)


class SystemConfigReader(Protocol):
    async def get_system_config(self) -> SystemConfig: ...


class StaticSystemConfigReader:
    """Serves a fixed ``SystemConfig``."""

    def __init__(self, config: SystemConfig | None = None):
        self.config = config or SystemConfig()

    async def get_system_config(self) -> SystemConfig:
        return self.config


class FileSystemConfigReader:
    """Reads ``systemConfig`` from the hub settings file on every call."""

    def __init__(self, path: Path | None = None):
        self._path = path

    def _get_path(self) -> Path:
        if self._path is not None:
            return self._path
        return get_config_dir() / Settings.load().settings_file

    def _read(self) -> SystemConfig:
        path = self._get_path()
        if not path.exists():
            return SystemConfig()
        try:
            data = json.loads(path.read_text())
            return SystemConfig.model_validate(data.get("systemConfig") or {})
        except (json.JSONDecodeError, OSError, AttributeError, ValidationError) as exc:
            logger.warning("Failed to load system config from %s: %s", path, exc)
            return SystemConfig()

    async def get_system_config(self) -> SystemConfig:
        return await asyncio.to_thread(self._read)


# Singleton
_reader: SystemConfigReader | None = None


def get_system_config_reader() -> SystemConfigReader:
    global _reader
    if _reader is None:
        _reader = FileSystemConfigReader()
    return _reader


def reset_system_config_reader() -> None:
    global _reader
    _reader = None
