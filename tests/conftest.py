# Shared fixtures: isolated config dir, temp-dir OAuth storage, static system config.
# Created: 2026-10-12

import asyncio

import pytest

from mcphub.api.oauth2.models import OAuthClient, UserRecord
from mcphub.api.oauth2.storage import OAuthStorage
from mcphub.config import StaticSystemConfigReader, SystemConfig

JWT_SECRET = "test-session-signing-secret-0123456789abcdefghijklmnop"
PUBLIC_REDIRECT = "http://localhost:8080/callback"
CONFIDENTIAL_REDIRECT = "https://app.example.com/oauth/callback"
CONFIDENTIAL_SECRET = "confidential-client-secret"


def _reset_singletons():
    from mcphub.api.bearer_keys import reset_bearer_key_manager
    from mcphub.api.oauth2.registration import reset_registration_service
    from mcphub.api.oauth2.server import reset_oauth_server
    from mcphub.api.oauth2.storage import reset_oauth_storage
    from mcphub.config import reset_system_config_reader
    from mcphub.hub_auth import reset_auth_chain
    from mcphub.security.rate_limiter import reset_limiters

    reset_bearer_key_manager()
    reset_registration_service()
    reset_oauth_server()
    reset_oauth_storage()
    reset_system_config_reader()
    reset_auth_chain()
    reset_limiters()


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path, monkeypatch):
    monkeypatch.setenv("MCPHUB_CONFIG_DIR", str(tmp_path / "config"))
    monkeypatch.setenv("MCPHUB_JWT_SECRET", JWT_SECRET)
    for var in ("MCPHUB_READONLY", "MCPHUB_BASE_PATH", "MCPHUB_AUTH_RATE_PER_MINUTE"):
        monkeypatch.delenv(var, raising=False)
    _reset_singletons()
    yield
    _reset_singletons()


@pytest.fixture
def jwt_secret():
    return JWT_SECRET


@pytest.fixture
def system_config():
    return SystemConfig()


@pytest.fixture
def config_reader(system_config, monkeypatch):
    import mcphub.config as mod

    reader = StaticSystemConfigReader(system_config)
    monkeypatch.setattr(mod, "_reader", reader)
    return reader


@pytest.fixture
def storage(tmp_path, monkeypatch):
    import mcphub.api.oauth2.storage as mod

    store = OAuthStorage(data_dir=tmp_path / "oauth")
    monkeypatch.setattr(mod, "_storage", store)
    return store


@pytest.fixture
def server(storage, config_reader, monkeypatch):
    import mcphub.api.oauth2.server as mod

    srv = mod.AuthorizationServer(storage, config_reader)
    monkeypatch.setattr(mod, "_server", srv)
    return srv


@pytest.fixture
def public_client(storage):
    client = OAuthClient(
        client_id="public-client",
        name="Public <App>",
        redirect_uris=[PUBLIC_REDIRECT],
    )
    asyncio.run(storage.create_client(client))
    return client


@pytest.fixture
def confidential_client(storage):
    client = OAuthClient(
        client_id="confidential-client",
        name="Confidential App",
        redirect_uris=[CONFIDENTIAL_REDIRECT],
        client_secret=CONFIDENTIAL_SECRET,
    )
    asyncio.run(storage.create_client(client))
    return client


@pytest.fixture
def users(storage):
    asyncio.run(storage.save_user(UserRecord(username="alice", is_admin=False)))
    asyncio.run(storage.save_user(UserRecord(username="root", is_admin=True)))
    return storage
