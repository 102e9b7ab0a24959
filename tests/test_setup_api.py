"""Setup status, credential and diagnostics endpoint tests."""

import json

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from tuttiud.config import Settings
from tuttiud.crypto.cipher import CredentialCipher
from tuttiud.db.models import OrgMembershipRow


# --- setup status / settings ---


@pytest.mark.asyncio
async def test_setup_status_without_key(client, seed_org, auth):
    await seed_org()
    resp = await client.get("/api/setup-status", params={"orgId": "org_1"}, headers=auth("user_admin"))
    assert resp.status_code == 200
    assert resp.json() == {"success": True, "hasDedicatedKey": False}


@pytest.mark.asyncio
async def test_setup_status_with_key(client, seed_org, auth):
    await seed_org(app_key="abc123")
    resp = await client.get("/api/setup-status", params={"orgId": "org_1"}, headers=auth("user_owner"))
    assert resp.json()["hasDedicatedKey"] is True


@pytest.mark.asyncio
async def test_setup_status_requires_admin(client, seed_org, auth):
    await seed_org()
    resp = await client.get("/api/setup-status", params={"orgId": "org_1"}, headers=auth("user_member"))
    assert resp.status_code == 403
    data = resp.json()
    assert data["success"] is False
    assert data["code"] == "FORBIDDEN"
    assert data["trace_id"] == resp.headers["X-Trace-Id"]


@pytest.mark.asyncio
async def test_setup_status_requires_token(client, seed_org):
    await seed_org()
    resp = await client.get("/api/setup-status", params={"orgId": "org_1"})
    assert resp.status_code == 401
    assert resp.json()["code"] == "UNAUTHENTICATED"


@pytest.mark.asyncio
async def test_setup_status_requires_org_id(client, auth):
    resp = await client.get("/api/setup-status", headers=auth("user_admin"))
    assert resp.status_code == 400
    assert resp.json()["code"] == "BAD_REQUEST"


@pytest.mark.asyncio
async def test_setup_status_unknown_organization(client, db_session, auth):
    db_session.add(OrgMembershipRow(org_id="org_ghost", user_id="user_admin", role="admin"))
    await db_session.commit()
    resp = await client.get("/api/setup-status", params={"orgId": "org_ghost"}, headers=auth("user_admin"))
    assert resp.status_code == 404
    assert resp.json()["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_org_settings_visible_to_members(client, seed_org, auth):
    await seed_org(metadata={"connections": {"tuttiud": "connected"}, "billing": {"plan": "pro"}})
    resp = await client.get("/api/org-settings", params={"orgId": "org_1"}, headers=auth("user_member"))
    assert resp.status_code == 200
    settings = resp.json()["settings"]
    assert settings["tenant_store_url"] == "https://tenant-one.example.test"
    assert settings["metadata"]["connections"] == {"tuttiud": "connected"}
    assert settings["metadata"]["raw"]["billing"] == {"plan": "pro"}


@pytest.mark.asyncio
async def test_org_settings_absent(client, seed_org, auth):
    await seed_org(with_settings=False)
    resp = await client.get("/api/org-settings", params={"orgId": "org_1"}, headers=auth("user_member"))
    assert resp.json() == {"success": True, "settings": None}


@pytest.mark.asyncio
async def test_setup_script_is_served(client):
    resp = await client.get("/api/setup-script")
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/plain")
    assert "setup_assistant_diagnostics" in resp.text
    assert "create schema if not exists tuttiud" in resp.text.lower()


# --- storing the application key ---


def _store_body(app_key="abc123", **overrides):
    body = {
        "orgId": "org_1",
        "appKey": app_key,
        "tenantStoreAddress": "https://tenant-one.example.test",
    }
    body.update(overrides)
    return body


@pytest.mark.asyncio
async def test_store_key_encrypts_and_flags_metadata(client, seed_org, tenant_store, auth, load_org, load_settings, cipher):
    await seed_org(metadata={"connections": {"other": "connected"}, "billing": {"plan": "pro"}})
    tenant_store.valid_keys.add("abc123")

    resp = await client.post("/api/store-tuttiud-app-key", json=_store_body(), headers=auth("user_admin"))
    assert resp.status_code == 200
    data = resp.json()
    assert data["success"] is True
    assert data["diagnostics"]["status"] == "ok"
    assert data["metadata"]["credentials"] == {"tuttiudAppJwt": "stored"}
    assert data["metadata"]["billing"] == {"plan": "pro"}
    assert data["metadata"]["connections"]["other"] == "connected"

    org = await load_org()
    assert org.dedicated_key_encrypted != "abc123"
    assert cipher.decrypt(org.dedicated_key_encrypted) == "abc123"

    settings = await load_settings()
    assert settings.metadata_["credentials"]["tuttiudAppJwt"] == "stored"
    assert settings.metadata_["billing"] == {"plan": "pro"}

    check = tenant_store.calls_to("setup_assistant_diagnostics")[-1]
    assert check.headers["apikey"] == "abc123"


@pytest.mark.asyncio
async def test_store_key_never_returns_secret(client, seed_org, tenant_store, auth):
    await seed_org()
    tenant_store.valid_keys.add("abc123")
    resp = await client.post("/api/store-tuttiud-app-key", json=_store_body(), headers=auth("user_admin"))
    assert "abc123" not in resp.text


@pytest.mark.asyncio
async def test_store_key_rejected_check_reverts_to_nothing(client, seed_org, auth, load_org, load_settings):
    await seed_org(metadata={"billing": {"plan": "pro"}})

    resp = await client.post("/api/store-tuttiud-app-key", json=_store_body("bad-key"), headers=auth("user_admin"))
    assert resp.status_code == 400
    data = resp.json()
    assert data["code"] == "VALIDATION_FAILED"
    assert data["details"]["code"] == "PGRST301"

    org = await load_org()
    assert org.dedicated_key_encrypted is None
    settings = await load_settings()
    assert settings.metadata_ == {"billing": {"plan": "pro"}}


@pytest.mark.asyncio
async def test_store_key_rejected_check_keeps_previous_key(client, seed_org, tenant_store, auth, load_org, cipher):
    await seed_org(app_key="old-key")
    tenant_store.valid_keys.add("old-key")

    resp = await client.post("/api/store-tuttiud-app-key", json=_store_body("new-key"), headers=auth("user_admin"))
    assert resp.status_code == 400

    org = await load_org()
    assert cipher.decrypt(org.dedicated_key_encrypted) == "old-key"


@pytest.mark.asyncio
async def test_store_key_without_settings_row_creates_one(client, seed_org, tenant_store, auth, load_settings):
    await seed_org(with_settings=False)
    tenant_store.valid_keys.add("abc123")

    resp = await client.post(
        "/api/store-tuttiud-app-key",
        json=_store_body(currentMetadata={"billing": {"plan": "free"}}),
        headers=auth("user_admin"),
    )
    assert resp.status_code == 200

    settings = await load_settings()
    assert settings.tenant_store_url == "https://tenant-one.example.test"
    assert settings.metadata_["billing"] == {"plan": "free"}
    assert settings.metadata_["credentials"] == {"tuttiudAppJwt": "stored"}


@pytest.mark.asyncio
async def test_store_key_missing_fields(client, seed_org, auth):
    await seed_org()
    resp = await client.post("/api/store-tuttiud-app-key", json=_store_body("   "), headers=auth("user_admin"))
    assert resp.status_code == 400
    assert resp.json()["code"] == "BAD_REQUEST"

    resp = await client.post(
        "/api/store-tuttiud-app-key",
        json=_store_body(tenantStoreAddress=""),
        headers=auth("user_admin"),
    )
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_store_key_requires_admin(client, seed_org, tenant_store, auth, load_org):
    await seed_org()
    tenant_store.valid_keys.add("abc123")
    resp = await client.post("/api/store-tuttiud-app-key", json=_store_body(), headers=auth("user_member"))
    assert resp.status_code == 403
    assert (await load_org()).dedicated_key_encrypted is None


@pytest.mark.asyncio
async def test_store_key_without_encryption_key(db_engine, session_factory, tenant_store, seed_org, auth):
    from tuttiud.main import create_app

    await seed_org()
    unconfigured = Settings(
        _env_file=None,
        control_store_url="sqlite+aiosqlite:///",
        control_store_service_key="test-identity-signing-secret",
    )
    app = create_app(unconfigured, tenant_transport=tenant_store.transport())
    app.state.db_engine = db_engine
    app.state.db_session_factory = session_factory

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        resp = await ac.post("/api/store-tuttiud-app-key", json=_store_body(), headers=auth("user_admin"))

    assert resp.status_code == 500
    data = resp.json()
    assert data["code"] == "CONFIGURATION_MISSING"
    assert "credentials_encryption_key" not in data["message"]


# --- verification and tenant steps ---


@pytest.mark.asyncio
async def test_verify_stored_key(client, seed_org, tenant_store, auth):
    await seed_org(app_key="abc123")
    tenant_store.valid_keys.add("abc123")

    resp = await client.post("/api/verify-tuttiud-setup", json={"orgId": "org_1"}, headers=auth("user_admin"))
    assert resp.status_code == 200
    diagnostics = resp.json()["diagnostics"]
    assert diagnostics["status"] == "ok"
    assert len(diagnostics["raw"]) == 2


@pytest.mark.asyncio
async def test_verify_reports_failing_checks(client, seed_org, tenant_store, auth):
    await seed_org(app_key="abc123")
    tenant_store.valid_keys.add("abc123")
    tenant_store.rpc_results["setup_assistant_diagnostics"] = [
        {"check_name": 'Table "Students" exists', "success": False, "details": "Students table is missing"},
    ]

    resp = await client.post("/api/verify-tuttiud-setup", json={"orgId": "org_1"}, headers=auth("user_admin"))
    diagnostics = resp.json()["diagnostics"]
    assert diagnostics["status"] == "error"
    assert diagnostics["issues"] == [{"type": "other", "description": "Students table is missing"}]


@pytest.mark.asyncio
async def test_verify_with_revoked_key(client, seed_org, auth):
    await seed_org(app_key="revoked-key")
    resp = await client.post("/api/verify-tuttiud-setup", json={"orgId": "org_1"}, headers=auth("user_admin"))
    assert resp.status_code == 400
    assert resp.json()["code"] == "VERIFICATION_FAILED"


@pytest.mark.asyncio
async def test_verify_without_tenant_address(client, seed_org, auth):
    await seed_org(app_key="abc123", tenant_store_url=None)
    resp = await client.post("/api/verify-tuttiud-setup", json={"orgId": "org_1"}, headers=auth("user_admin"))
    assert resp.status_code == 409
    assert resp.json()["code"] == "SETUP_INCOMPLETE"


@pytest.mark.asyncio
async def test_verify_with_undecryptable_key(client, db_session, seed_org, auth):
    org = await seed_org()
    org.dedicated_key_encrypted = CredentialCipher("a-different-key").encrypt("abc123")
    await db_session.commit()

    resp = await client.post("/api/verify-tuttiud-setup", json={"orgId": "org_1"}, headers=auth("user_admin"))
    assert resp.status_code == 500
    assert resp.json()["code"] == "DECRYPTION_FAILED"


@pytest.mark.asyncio
async def test_initialize_passes_org_id(client, seed_org, tenant_store, auth):
    await seed_org(app_key="abc123")
    tenant_store.valid_keys.add("abc123")

    resp = await client.post("/api/setup/initialize", json={"orgId": "org_1"}, headers=auth("user_member"))
    assert resp.status_code == 200
    assert resp.json() == {"success": True, "initialized": True, "message": "Connection verified."}
    call = tenant_store.calls_to("setup_assistant_initialize")[-1]
    assert json.loads(call.content) == {"org_id": "org_1"}


@pytest.mark.asyncio
async def test_initialize_missing_function(client, seed_org, tenant_store, auth):
    await seed_org(app_key="abc123")
    tenant_store.valid_keys.add("abc123")
    del tenant_store.rpc_results["setup_assistant_initialize"]

    resp = await client.post("/api/setup/initialize", json={"orgId": "org_1"}, headers=auth("user_member"))
    assert resp.status_code == 424
    data = resp.json()
    assert data["code"] == "MISSING_FUNCTION"
    assert data["details"]["code"] == "PGRST202"


@pytest.mark.asyncio
async def test_schema_status(client, seed_org, tenant_store, auth):
    await seed_org(app_key="abc123")
    tenant_store.valid_keys.add("abc123")
    tenant_store.rpc_results["setup_assistant_schema_status"] = {
        "exists": True,
        "last_bootstrapped_at": "2026-09-01T10:00:00+00:00",
    }

    resp = await client.post("/api/setup/schema-status", json={"orgId": "org_1"}, headers=auth("user_member"))
    assert resp.json() == {
        "success": True,
        "exists": True,
        "last_bootstrapped_at": "2026-09-01T10:00:00+00:00",
    }


@pytest.mark.asyncio
async def test_bootstrap(client, seed_org, tenant_store, auth):
    await seed_org(app_key="abc123")
    tenant_store.valid_keys.add("abc123")

    resp = await client.post("/api/setup/bootstrap", json={"orgId": "org_1"}, headers=auth("user_member"))
    assert resp.json() == {"success": True, "executed": True, "message": "Schema created."}


@pytest.mark.asyncio
async def test_bootstrap_failure(client, seed_org, auth):
    await seed_org(app_key="revoked-key")
    resp = await client.post("/api/setup/bootstrap", json={"orgId": "org_1"}, headers=auth("user_member"))
    assert resp.status_code == 502
    assert resp.json()["code"] == "BOOTSTRAP_FAILED"


@pytest.mark.asyncio
async def test_diagnostics_missing_function_is_advisory(client, seed_org, tenant_store, auth):
    await seed_org(app_key="abc123")
    tenant_store.valid_keys.add("abc123")
    del tenant_store.rpc_results["setup_assistant_diagnostics"]

    resp = await client.post("/api/setup/diagnostics", json={"orgId": "org_1"}, headers=auth("user_member"))
    assert resp.status_code == 200
    diagnostics = resp.json()["diagnostics"]
    assert diagnostics["status"] == "warning"
    assert diagnostics["raw"] == {"missingFunction": True}


@pytest.mark.asyncio
async def test_diagnostics_structured_payload(client, seed_org, tenant_store, auth):
    await seed_org(app_key="abc123")
    tenant_store.valid_keys.add("abc123")
    tenant_store.rpc_results["setup_assistant_diagnostics"] = {
        "status": "error",
        "missing_policies": ["Students read policy"],
        "suggested_sql": "create policy ...",
    }

    resp = await client.post("/api/setup/diagnostics", json={"orgId": "org_1"}, headers=auth("user_member"))
    diagnostics = resp.json()["diagnostics"]
    assert diagnostics["status"] == "error"
    assert diagnostics["issues"] == [{"type": "policy", "description": "Students read policy"}]
    assert diagnostics["sql_snippets"] == [{"title": "Suggested SQL", "sql": "create policy ..."}]


# --- connection status ---


@pytest.mark.asyncio
async def test_connection_status_preserves_other_metadata(client, seed_org, auth, load_settings):
    await seed_org(metadata={"credentials": {"tuttiudAppJwt": "stored"}, "billing": {"plan": "pro"}})

    resp = await client.post(
        "/api/connection-status",
        json={"orgId": "org_1", "status": "connected"},
        headers=auth("user_admin"),
    )
    assert resp.status_code == 200
    assert resp.json()["metadata"]["connections"] == {"tuttiud": "connected"}

    settings = await load_settings()
    assert settings.metadata_ == {
        "credentials": {"tuttiudAppJwt": "stored"},
        "billing": {"plan": "pro"},
        "connections": {"tuttiud": "connected"},
    }


@pytest.mark.asyncio
async def test_connection_status_requires_admin(client, seed_org, auth, load_settings):
    await seed_org()
    resp = await client.post("/api/connection-status", json={"orgId": "org_1"}, headers=auth("user_member"))
    assert resp.status_code == 403
    assert (await load_settings()).metadata_ == {}


@pytest.mark.asyncio
async def test_connection_status_without_settings_row(client, seed_org, auth):
    await seed_org(with_settings=False)
    resp = await client.post("/api/connection-status", json={"orgId": "org_1"}, headers=auth("user_admin"))
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_store_key_non_json_answer_keeps_previous_key(db_engine, session_factory, app_settings, seed_org, auth, load_org, cipher):
    from tuttiud.main import create_app

    await seed_org(app_key="old-key")

    def html_answer(request):
        return httpx.Response(200, text="<html>not postgrest</html>", headers={"content-type": "text/html"})

    app = create_app(app_settings, tenant_transport=httpx.MockTransport(html_answer))
    app.state.db_engine = db_engine
    app.state.db_session_factory = session_factory

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        resp = await ac.post("/api/store-tuttiud-app-key", json=_store_body("new-key"), headers=auth("user_admin"))

    assert resp.status_code == 400
    data = resp.json()
    assert data["success"] is False
    assert data["code"] == "VALIDATION_FAILED"
    assert data["details"]["code"] == "invalid_response"

    org = await load_org()
    assert cipher.decrypt(org.dedicated_key_encrypted) == "old-key"


@pytest.mark.asyncio
async def test_store_key_invalid_address_keeps_previous_key(client, seed_org, tenant_store, auth, load_org, cipher):
    await seed_org(app_key="old-key")
    tenant_store.valid_keys.update({"old-key", "new-key"})

    resp = await client.post(
        "/api/store-tuttiud-app-key",
        json=_store_body("new-key", tenantStoreAddress="https://tenant-one.example.test:abc"),
        headers=auth("user_admin"),
    )
    assert resp.status_code == 400
    assert resp.json()["details"]["code"] == "invalid_url"

    org = await load_org()
    assert cipher.decrypt(org.dedicated_key_encrypted) == "old-key"


@pytest.mark.asyncio
async def test_store_key_saves_the_validated_address(client, seed_org, tenant_store, auth, load_settings):
    await seed_org(tenant_store_url="https://old-tenant.example.test", metadata={"billing": {"plan": "pro"}})
    tenant_store.valid_keys.add("abc123")

    resp = await client.post("/api/store-tuttiud-app-key", json=_store_body(), headers=auth("user_admin"))
    assert resp.status_code == 200

    check = tenant_store.calls_to("setup_assistant_diagnostics")[-1]
    assert check.url.host == "tenant-one.example.test"
    settings = await load_settings()
    assert settings.tenant_store_url == "https://tenant-one.example.test"
    assert settings.metadata_["billing"] == {"plan": "pro"}

    # Tenant operations now reach the address the key was validated against
    resp = await client.post("/api/verify-tuttiud-setup", json={"orgId": "org_1"}, headers=auth("user_admin"))
    assert resp.status_code == 200
    assert tenant_store.requests[-1].url.host == "tenant-one.example.test"
