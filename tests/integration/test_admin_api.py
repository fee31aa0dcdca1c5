"""Integration tests: tenant member management."""
import pytest

pytestmark = pytest.mark.asyncio

NEW_PASSWORD = "Verneombud2025Ny"
LADDER_RISK = {
    "title": "Ladder without anti-slip feet",
    "context": "Used daily for shelf restocking",
    "likelihood": 2,
    "consequence": 2,
}


async def test_list_members(client, seed, auth_headers):
    resp = await client.get("/api/v1/admin/members", headers=auth_headers(seed.admin))
    assert resp.status_code == 200
    assert sorted(m["email"] for m in resp.json()) == [
        "admin@nordvik.no",
        "ansatt@nordvik.no",
        "hms@nordvik.no",
        "leder@nordvik.no",
    ]


async def test_members_require_admin(client, seed, auth_headers):
    resp = await client.get("/api/v1/admin/members", headers=auth_headers(seed.hms))
    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "AUTH_004"


# ─── add ──────────────────────────────────────────────────────────────────────

async def test_add_new_user(client, seed, auth_headers):
    resp = await client.post(
        "/api/v1/admin/members",
        json={
            "email": "Verneombud@Nordvik.no",
            "name": "Kari Verne",
            "role": "VERNEOMBUD",
            "password": NEW_PASSWORD,
        },
        headers=auth_headers(seed.admin),
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["email"] == "verneombud@nordvik.no"
    assert body["role"] == "VERNEOMBUD"
    assert body["is_active"] is True

    login = await client.post(
        "/api/v1/auth/login",
        json={"email": "verneombud@nordvik.no", "password": NEW_PASSWORD},
    )
    assert login.status_code == 200
    assert login.json()["role"] == "VERNEOMBUD"


async def test_new_user_needs_password(client, seed, auth_headers):
    resp = await client.post(
        "/api/v1/admin/members",
        json={"email": "nobody@nordvik.no"},
        headers=auth_headers(seed.admin),
    )
    assert resp.status_code == 422
    assert resp.json()["error"]["code"] == "GEN_001"


async def test_weak_initial_password(client, seed, auth_headers):
    resp = await client.post(
        "/api/v1/admin/members",
        json={"email": "nobody@nordvik.no", "password": "short"},
        headers=auth_headers(seed.admin),
    )
    assert resp.status_code == 422


async def test_existing_member_conflict(client, seed, auth_headers):
    resp = await client.post(
        "/api/v1/admin/members",
        json={"email": "hms@nordvik.no"},
        headers=auth_headers(seed.admin),
    )
    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "TEN_001"


async def test_add_user_from_other_tenant(client, seed, auth_headers, password):
    resp = await client.post(
        "/api/v1/admin/members",
        json={"email": "admin@fjord.no", "role": "LEDER"},
        headers=auth_headers(seed.admin),
    )
    assert resp.status_code == 201
    assert resp.json()["user_id"] == seed.outsider.user_id

    login = await client.post(
        "/api/v1/auth/login",
        json={"email": "admin@fjord.no", "password": password, "tenant_id": seed.tenant_id},
    )
    assert login.status_code == 200
    assert login.json()["role"] == "LEDER"


# ─── change role / remove ─────────────────────────────────────────────────────

async def test_change_role_takes_effect_immediately(client, seed, auth_headers):
    ansatt_headers = auth_headers(seed.ansatt)
    denied = await client.post("/api/v1/risks", json=LADDER_RISK, headers=ansatt_headers)
    assert denied.status_code == 403

    resp = await client.patch(
        f"/api/v1/admin/members/{seed.ansatt.user_id}",
        json={"role": "VERNEOMBUD"},
        headers=auth_headers(seed.admin),
    )
    assert resp.status_code == 200
    assert resp.json()["role"] == "VERNEOMBUD"

    # same token, live membership
    allowed = await client.post("/api/v1/risks", json=LADDER_RISK, headers=ansatt_headers)
    assert allowed.status_code == 201


async def test_cannot_change_own_role(client, seed, auth_headers):
    resp = await client.patch(
        f"/api/v1/admin/members/{seed.admin.user_id}",
        json={"role": "ANSATT"},
        headers=auth_headers(seed.admin),
    )
    assert resp.status_code == 422


async def test_change_role_unknown_member(client, seed, auth_headers):
    resp = await client.patch(
        f"/api/v1/admin/members/{seed.outsider.user_id}",
        json={"role": "HMS"},
        headers=auth_headers(seed.admin),
    )
    assert resp.status_code == 404


async def test_remove_member(client, seed, auth_headers):
    resp = await client.delete(
        f"/api/v1/admin/members/{seed.leder.user_id}", headers=auth_headers(seed.admin)
    )
    assert resp.status_code == 204

    listed = await client.get("/api/v1/admin/members", headers=auth_headers(seed.admin))
    assert "leder@nordvik.no" not in [m["email"] for m in listed.json()]

    me = await client.get("/api/v1/auth/me", headers=auth_headers(seed.leder))
    assert me.status_code == 401
    assert me.json()["error"]["code"] == "AUTH_006"


async def test_cannot_remove_self(client, seed, auth_headers):
    resp = await client.delete(
        f"/api/v1/admin/members/{seed.admin.user_id}", headers=auth_headers(seed.admin)
    )
    assert resp.status_code == 422


async def test_member_changes_are_audited(client, seed, auth_headers):
    headers = auth_headers(seed.admin)
    await client.patch(
        f"/api/v1/admin/members/{seed.ansatt.user_id}", json={"role": "LEDER"}, headers=headers
    )
    resp = await client.get(
        "/api/v1/audit", params={"action": "MEMBER_ROLE_CHANGED"}, headers=headers
    )
    items = resp.json()["items"]
    assert len(items) == 1
    assert items[0]["resource_ref"] == f"User:{seed.ansatt.user_id}"
