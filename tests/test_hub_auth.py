# Tests for the authentication precedence chain and the HTTP auth middleware.
# Created: 2026-10-12

import asyncio
from datetime import UTC, datetime, timedelta

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from mcphub.api.bearer_keys import BearerKeyManager
from mcphub.api.oauth2.models import OAuthToken
from mcphub.config import Settings
from mcphub.hub_auth import (
    INVALID_TOKEN_MESSAGE,
    NO_TOKEN_MESSAGE,
    AuthenticationChain,
    BearerKeyAuthenticator,
    Credentials,
    OAuthTokenAuthenticator,
    SessionTokenAuthenticator,
    SkipAuthAuthenticator,
    Verdict,
    auth_middleware,
    bearer_token,
    default_authenticators,
    readonly_blocks,
)
from mcphub.security.session_tokens import create_session_token


def _oauth_token(access_token, username="alice", expired=False):
    delta = timedelta(hours=-1) if expired else timedelta(hours=1)
    return OAuthToken(
        access_token=access_token,
        access_token_expires_at=datetime.now(UTC) + delta,
        client_id="public-client",
        username=username,
        scope="read write",
    )


@pytest.fixture
def keys(tmp_path, monkeypatch):
    import mcphub.api.bearer_keys as mod

    manager = BearerKeyManager(storage_path=tmp_path / "bearer_keys.json")
    monkeypatch.setattr(mod, "_manager", manager)
    return manager


@pytest.fixture
def chain(keys, users, config_reader, jwt_secret):
    return AuthenticationChain(
        [
            SkipAuthAuthenticator(),
            BearerKeyAuthenticator(keys),
            OAuthTokenAuthenticator(users, users),
            SessionTokenAuthenticator(jwt_secret),
        ],
        config_reader,
    )


# ===================== helpers =====================


class TestHelpers:
    def test_bearer_token(self):
        assert bearer_token("Bearer abc") == "abc"
        assert bearer_token("Bearer   ") is None
        assert bearer_token("Basic abc") is None
        assert bearer_token(None) is None

    def test_credentials_present(self):
        assert not Credentials().present
        assert Credentials(query_token="x").present

    def test_default_order(self):
        names = [a.name for a in default_authenticators()]
        assert names == ["skip_auth", "bearer_key", "oauth_token", "session_token"]
        assert AuthenticationChain(config_reader=object()).names == names

    def test_readonly_blocks(self, monkeypatch):
        monkeypatch.setenv("MCPHUB_READONLY", "true")
        settings = Settings.load()
        assert readonly_blocks("POST", "/api/servers", settings)
        assert readonly_blocks("DELETE", "/api/servers/x", settings)
        assert not readonly_blocks("GET", "/api/servers", settings)
        assert not readonly_blocks("HEAD", "/api/servers", settings)
        assert not readonly_blocks("OPTIONS", "/api/servers", settings)
        assert not readonly_blocks("POST", "/tools/call/my-server", settings)

    def test_readonly_off(self):
        assert not readonly_blocks("POST", "/api/servers", Settings.load())


# ===================== AuthenticationChain =====================


class TestAuthenticationChain:
    @pytest.mark.asyncio
    async def test_no_credentials(self, chain):
        decision = await chain.authenticate(Credentials())
        assert decision.verdict is Verdict.REJECT
        assert decision.status_code == 401
        assert decision.message == NO_TOKEN_MESSAGE

    @pytest.mark.asyncio
    async def test_garbage_credentials(self, chain):
        decision = await chain.authenticate(Credentials(bearer="garbage"))
        assert decision.verdict is Verdict.REJECT
        assert decision.message == INVALID_TOKEN_MESSAGE

    @pytest.mark.asyncio
    async def test_skip_auth_admits_anything(self, chain, system_config):
        system_config.routing.skip_auth = True
        decision = await chain.authenticate(Credentials())
        assert decision.admitted
        assert decision.principal is None

    @pytest.mark.asyncio
    async def test_bearer_key_all(self, chain, keys):
        await keys.create("ci", token="ci-key-value-0123456789")
        decision = await chain.authenticate(Credentials(bearer="ci-key-value-0123456789"))
        assert decision.admitted
        assert decision.principal.username == "bearer-key:ci"
        assert decision.principal.is_admin is True
        assert decision.principal.auth_method == "bearer_key"
        assert decision.principal.bearer_key.name == "ci"

    @pytest.mark.asyncio
    async def test_bearer_key_scoped_is_not_admin(self, chain, keys):
        await keys.create(
            "scoped",
            token="scoped-key-value-0123456789",
            access_type="servers",
            allowed_servers=["fetch"],
        )
        decision = await chain.authenticate(Credentials(bearer="scoped-key-value-0123456789"))
        principal = decision.principal
        assert principal.is_admin is False
        assert principal.can_access_server("fetch")
        assert not principal.can_access_server("github")

    @pytest.mark.asyncio
    async def test_disabled_bearer_key_falls_through(self, chain, keys):
        await keys.create("off", token="disabled-key-0123456789", enabled=False)
        decision = await chain.authenticate(Credentials(bearer="disabled-key-0123456789"))
        assert decision.verdict is Verdict.REJECT
        assert decision.message == INVALID_TOKEN_MESSAGE

    @pytest.mark.asyncio
    async def test_bearer_key_wins_over_oauth_token(self, chain, keys, users):
        value = "shared-credential-0123456789"
        await keys.create("ops", token=value)
        await users.save_token(_oauth_token(value, username="root"))
        decision = await chain.authenticate(Credentials(bearer=value))
        assert decision.principal.username == "bearer-key:ops"

    @pytest.mark.asyncio
    async def test_oauth_token_admin_flag_from_user_store(self, chain, users):
        await users.save_token(_oauth_token("mhat_alice", username="alice"))
        await users.save_token(_oauth_token("mhat_root", username="root"))

        alice = (await chain.authenticate(Credentials(bearer="mhat_alice"))).principal
        root = (await chain.authenticate(Credentials(bearer="mhat_root"))).principal
        assert alice.username == "alice"
        assert alice.is_admin is False
        assert alice.auth_method == "oauth"
        assert alice.scope == "read write"
        assert root.is_admin is True

    @pytest.mark.asyncio
    async def test_expired_oauth_token_is_terminal(self, chain, users, jwt_secret):
        await users.save_token(_oauth_token("mhat_old", expired=True))
        session = create_session_token("alice", jwt_secret)
        decision = await chain.authenticate(Credentials(bearer="mhat_old", header_token=session))
        assert decision.verdict is Verdict.REJECT
        assert decision.status_code == 401

    @pytest.mark.asyncio
    async def test_oauth_ignored_when_server_disabled(self, chain, users, system_config):
        await users.save_token(_oauth_token("mhat_alice"))
        system_config.oauth_server.enabled = False
        decision = await chain.authenticate(Credentials(bearer="mhat_alice"))
        assert decision.verdict is Verdict.REJECT
        assert decision.message == INVALID_TOKEN_MESSAGE

    @pytest.mark.asyncio
    async def test_session_token_sources(self, chain, jwt_secret):
        token = create_session_token("alice", jwt_secret, is_admin=True)
        for creds in (
            Credentials(header_token=token),
            Credentials(query_token=token),
            Credentials(bearer=token),
        ):
            decision = await chain.authenticate(creds)
            assert decision.admitted
            assert decision.principal.username == "alice"
            assert decision.principal.is_admin is True
            assert decision.principal.auth_method == "session"

    @pytest.mark.asyncio
    async def test_header_token_before_query_token(self, chain, jwt_secret):
        decision = await chain.authenticate(
            Credentials(
                header_token=create_session_token("alice", jwt_secret),
                query_token=create_session_token("bob", jwt_secret),
            )
        )
        assert decision.principal.username == "alice"

    @pytest.mark.asyncio
    async def test_session_signed_with_other_secret(self, chain):
        token = create_session_token("mallory", "another-secret-" + "x" * 40)
        decision = await chain.authenticate(Credentials(header_token=token))
        assert decision.verdict is Verdict.REJECT
        assert decision.message == INVALID_TOKEN_MESSAGE


# ===================== middleware =====================


def _make_app():
    app = FastAPI()
    app.middleware("http")(auth_middleware)

    def _who(request: Request):
        principal = request.state.principal
        return {"user": principal.username if principal else None}

    @app.get("/api/ping")
    async def get_ping(request: Request):
        return _who(request)

    @app.post("/api/ping")
    async def post_ping(request: Request):
        return _who(request)

    @app.post("/api/tools/call/echo")
    async def call_tool(request: Request):
        return _who(request)

    @app.get("/hub/api/ping")
    async def based_ping(request: Request):
        return _who(request)

    @app.post("/oauth/token")
    async def token(request: Request):
        return {"ok": True}

    @app.get("/oauth/whoami")
    async def whoami(request: Request):
        return _who(request)

    return app


class TestAuthMiddleware:
    @pytest.fixture
    def client(self, keys, users, config_reader):
        return TestClient(_make_app())

    @pytest.fixture
    def session(self, jwt_secret):
        return create_session_token("alice", jwt_secret)

    def test_protected_path_requires_credentials(self, client):
        resp = client.get("/api/ping")
        assert resp.status_code == 401
        assert resp.json() == {"success": False, "message": NO_TOKEN_MESSAGE}

    def test_invalid_credentials(self, client):
        resp = client.get("/api/ping", headers={"x-auth-token": "nope"})
        assert resp.status_code == 401
        assert resp.json()["message"] == INVALID_TOKEN_MESSAGE

    def test_session_token_admitted(self, client, session):
        resp = client.get("/api/ping", headers={"x-auth-token": session})
        assert resp.status_code == 200
        assert resp.json() == {"user": "alice"}

    def test_query_token_admitted(self, client, session):
        resp = client.get("/api/ping", params={"token": session})
        assert resp.json() == {"user": "alice"}

    def test_skip_auth(self, client, system_config):
        system_config.routing.skip_auth = True
        resp = client.get("/api/ping")
        assert resp.status_code == 200
        assert resp.json() == {"user": None}

    def test_expired_oauth_token_rejected(self, client, users):
        asyncio.run(users.save_token(_oauth_token("mhat_old", expired=True)))
        resp = client.get("/api/ping", headers={"Authorization": "Bearer mhat_old"})
        assert resp.status_code == 401

    def test_readonly_blocks_writes(self, client, session, monkeypatch):
        monkeypatch.setenv("MCPHUB_READONLY", "true")
        headers = {"x-auth-token": session}
        resp = client.post("/api/ping", headers=headers)
        assert resp.status_code == 403
        assert resp.json()["success"] is False
        assert client.get("/api/ping", headers=headers).status_code == 200
        assert client.post("/api/tools/call/echo", headers=headers).status_code == 200

    def test_readonly_checked_before_auth(self, client, monkeypatch):
        monkeypatch.setenv("MCPHUB_READONLY", "true")
        assert client.post("/api/ping").status_code == 403

    def test_base_path(self, client, session, monkeypatch):
        monkeypatch.setenv("MCPHUB_BASE_PATH", "/hub")
        assert client.get("/hub/api/ping").status_code == 401
        resp = client.get("/hub/api/ping", headers={"x-auth-token": session})
        assert resp.json() == {"user": "alice"}

    def test_public_path_attaches_principal_without_requiring_it(self, client, session):
        assert client.get("/oauth/whoami").json() == {"user": None}
        resp = client.get("/oauth/whoami", headers={"x-auth-token": session})
        assert resp.json() == {"user": "alice"}

    def test_auth_endpoints_rate_limited(self, client, monkeypatch):
        monkeypatch.setenv("MCPHUB_AUTH_RATE_PER_MINUTE", "2")
        assert client.post("/oauth/token").status_code == 200
        assert client.post("/oauth/token").status_code == 200
        resp = client.post("/oauth/token")
        assert resp.status_code == 429
        assert int(resp.headers["retry-after"]) >= 1
