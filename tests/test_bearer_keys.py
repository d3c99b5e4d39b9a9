# Tests for bearer key storage, the admin key endpoints and key scoping.
# Created: 2026-10-12

import asyncio
import json

import pytest
from fastapi.testclient import TestClient

from mcphub.api.bearer_keys import BearerKeyManager, BearerKeyRecord
from mcphub.api.serve import create_api_app
from mcphub.security.principal import Principal
from mcphub.security.session_tokens import create_session_token


@pytest.fixture
def manager(tmp_path, monkeypatch):
    import mcphub.api.bearer_keys as mod

    mgr = BearerKeyManager(storage_path=tmp_path / "bearer_keys.json")
    monkeypatch.setattr(mod, "_manager", mgr)
    return mgr


# ===================== BearerKeyManager =====================


class TestBearerKeyManager:
    @pytest.mark.asyncio
    async def test_create_generates_token(self, manager):
        record = await manager.create("ci")
        assert record.token
        assert record.enabled is True
        assert record.access_type == "all"
        assert (await manager.list_keys())[0].id == record.id

    @pytest.mark.asyncio
    async def test_persisted_to_disk(self, manager, tmp_path):
        await manager.create("ci", token="persisted-token")
        data = json.loads((tmp_path / "bearer_keys.json").read_text())
        assert data[0]["name"] == "ci"
        assert data[0]["token"] == "persisted-token"

        reloaded = BearerKeyManager(storage_path=tmp_path / "bearer_keys.json")
        assert (await reloaded.list_keys())[0].token == "persisted-token"

    @pytest.mark.asyncio
    async def test_find_enabled_by_token(self, manager):
        on = await manager.create("on", token="token-on")
        await manager.create("off", token="token-off", enabled=False)
        assert (await manager.find_enabled_by_token("token-on")).id == on.id
        assert await manager.find_enabled_by_token("token-off") is None
        assert await manager.find_enabled_by_token("unknown") is None
        assert await manager.find_enabled_by_token("") is None

    @pytest.mark.asyncio
    async def test_update(self, manager):
        record = await manager.create("ci", token="token-a")
        updated = await manager.update(record.id, enabled=False, name=None)
        assert updated.enabled is False
        assert updated.name == "ci"
        assert updated.updated_at is not None
        assert await manager.find_enabled_by_token("token-a") is None

    @pytest.mark.asyncio
    async def test_update_unknown(self, manager):
        assert await manager.update("missing", enabled=False) is None

    @pytest.mark.asyncio
    async def test_delete(self, manager):
        record = await manager.create("ci")
        assert await manager.delete(record.id) is True
        assert await manager.delete(record.id) is False
        assert await manager.list_keys() == []

    @pytest.mark.asyncio
    async def test_corrupt_file_reads_empty(self, manager, tmp_path):
        (tmp_path / "bearer_keys.json").write_text("{not json")
        assert await manager.list_keys() == []


# ===================== Principal scoping =====================


class TestKeyScoping:
    def _principal(self, **kwargs):
        key = BearerKeyRecord(id="k", name="k", token="t", **kwargs)
        return Principal(username="bearer-key:k", auth_method="bearer_key", bearer_key=key)

    def test_non_key_principal_unrestricted(self):
        assert Principal(username="alice").can_access_server("anything")

    def test_all(self):
        assert self._principal(access_type="all").can_access_server("fetch")

    def test_servers(self):
        p = self._principal(access_type="servers", allowed_servers=["fetch"])
        assert p.can_access_server("fetch")
        assert not p.can_access_server("github", groups=["dev"])

    def test_groups(self):
        p = self._principal(access_type="groups", allowed_groups=["dev"])
        assert p.can_access_server("github", groups=["dev"])
        assert not p.can_access_server("github")

    def test_custom(self):
        p = self._principal(access_type="custom", allowed_servers=["fetch"], allowed_groups=["dev"])
        assert p.can_access_server("fetch")
        assert p.can_access_server("github", groups=["dev"])
        assert not p.can_access_server("github", groups=["ops"])

    def test_to_dict(self):
        assert Principal(username="root", is_admin=True).to_dict() == {
            "username": "root",
            "isAdmin": True,
            "authMethod": "session",
        }


# ===================== HTTP =====================


class TestKeyEndpoints:
    @pytest.fixture
    def client(self, manager, users, config_reader):
        return TestClient(create_api_app())

    @pytest.fixture
    def admin_headers(self, jwt_secret):
        return {"x-auth-token": create_session_token("root", jwt_secret, is_admin=True)}

    @pytest.fixture
    def user_headers(self, jwt_secret):
        return {"x-auth-token": create_session_token("alice", jwt_secret)}

    def test_current_user(self, client, user_headers):
        resp = client.get("/api/v1/auth/user", headers=user_headers)
        assert resp.status_code == 200
        assert resp.json() == {"username": "alice", "isAdmin": False, "authMethod": "session"}

    def test_current_user_requires_auth(self, client):
        resp = client.get("/api/v1/auth/user")
        assert resp.status_code == 401
        assert resp.json()["success"] is False

    def test_current_user_skip_auth(self, client, system_config):
        system_config.routing.skip_auth = True
        resp = client.get("/api/v1/auth/user")
        assert resp.status_code == 200
        assert resp.json()["isAdmin"] is True
        assert resp.json()["username"] is None

    def test_non_admin_forbidden(self, client, user_headers):
        assert client.get("/api/v1/auth/keys", headers=user_headers).status_code == 403

    def test_crud(self, client, admin_headers):
        resp = client.post(
            "/api/v1/auth/keys",
            json={"name": "ci", "access_type": "servers", "allowed_servers": ["fetch"]},
            headers=admin_headers,
        )
        assert resp.status_code == 201
        key = resp.json()
        assert key["token"]
        assert key["allowed_servers"] == ["fetch"]

        listed = client.get("/api/v1/auth/keys", headers=admin_headers).json()
        assert [k["id"] for k in listed] == [key["id"]]

        resp = client.put(
            f"/api/v1/auth/keys/{key['id']}", json={"enabled": False}, headers=admin_headers
        )
        assert resp.status_code == 200
        assert resp.json()["enabled"] is False

        url = f"/api/v1/auth/keys/{key['id']}"
        assert client.delete(url, headers=admin_headers).status_code == 200
        assert client.delete(url, headers=admin_headers).status_code == 404

    def test_update_unknown(self, client, admin_headers):
        resp = client.put("/api/v1/auth/keys/nope", json={"enabled": True}, headers=admin_headers)
        assert resp.status_code == 404

    def test_empty_name_rejected(self, client, admin_headers):
        resp = client.post("/api/v1/auth/keys", json={"name": ""}, headers=admin_headers)
        assert resp.status_code == 422

    def test_key_authenticates_api_calls(self, client, manager):
        record = asyncio.run(manager.create("ops", token="ops-key-value"))
        headers = {"Authorization": f"Bearer {record.token}"}
        resp = client.get("/api/v1/auth/user", headers=headers)
        assert resp.json() == {
            "username": "bearer-key:ops",
            "isAdmin": True,
            "authMethod": "bearer_key",
        }
        assert client.get("/api/v1/auth/keys", headers=headers).status_code == 200

    def test_scoped_key_is_not_admin(self, client, manager):
        asyncio.run(manager.create("scoped", token="scoped-key", access_type="groups"))
        headers = {"Authorization": "Bearer scoped-key"}
        assert client.get("/api/v1/auth/keys", headers=headers).status_code == 403
