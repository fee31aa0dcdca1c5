"""Integration tests: document endpoints and signed file downloads."""
import pytest

pytestmark = pytest.mark.asyncio

PDF = b"%PDF-1.4 beredskapsplan"


async def _create(client, headers, title="Fire Safety Plan", kind="PLAN", **fields):
    return await client.post(
        "/api/v1/documents",
        data={"title": title, "kind": kind, **fields},
        files={"file": ("plan.pdf", PDF, "application/pdf")},
        headers=headers,
    )


# ─── POST /documents ──────────────────────────────────────────────────────────

async def test_create_document(client, seed, auth_headers):
    resp = await _create(client, auth_headers(seed.hms), version="1.0")
    assert resp.status_code == 201
    body = resp.json()
    assert body["status"] == "DRAFT"
    assert body["slug"] == "fire-safety-plan"
    assert body["version"] == "1.0"
    assert body["revision"] == 1
    assert len(body["versions"]) == 1
    assert body["next_review_date"] is not None


async def test_create_with_role_restriction(client, seed, auth_headers):
    resp = await _create(client, auth_headers(seed.hms), visible_to_roles=["HMS", "LEDER"])
    assert resp.status_code == 201
    doc_id = resp.json()["id"]
    assert resp.json()["visible_to_roles"] == ["HMS", "LEDER"]

    hidden = await client.get(f"/api/v1/documents/{doc_id}", headers=auth_headers(seed.ansatt))
    assert hidden.status_code == 404
    listed = await client.get("/api/v1/documents", headers=auth_headers(seed.ansatt))
    assert listed.json()["total"] == 0


async def test_duplicate_title_conflict(client, seed, auth_headers):
    first = await _create(client, auth_headers(seed.hms))
    resp = await _create(client, auth_headers(seed.hms), title="fire safety plan!!")
    assert resp.status_code == 409
    error = resp.json()["error"]
    assert error["code"] == "DOC_010"
    assert error["detail"]["existing_document_id"] == first.json()["id"]


async def test_invalid_kind_is_field_error(client, seed, auth_headers):
    resp = await _create(client, auth_headers(seed.hms), kind="BOGUS")
    assert resp.status_code == 422
    body = resp.json()
    assert body["success"] is False
    assert body["error"]["code"] == "GEN_001"
    assert "kind" in [f["field"] for f in body["error"]["detail"]["fields"]]


async def test_rejected_mime_type(client, seed, auth_headers):
    resp = await client.post(
        "/api/v1/documents",
        data={"title": "Installer", "kind": "OTHER"},
        files={"file": ("setup.exe", b"MZ", "application/x-msdownload")},
        headers=auth_headers(seed.hms),
    )
    assert resp.status_code == 422
    assert resp.json()["error"]["code"] == "DOC_003"


async def test_ansatt_cannot_create(client, seed, auth_headers):
    resp = await _create(client, auth_headers(seed.ansatt))
    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "AUTH_004"


async def test_create_requires_auth(client, seed):
    resp = await _create(client, {})
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "AUTH_003"


# ─── versions, approval, update ───────────────────────────────────────────────

async def test_version_upload_resets_approval(client, seed, auth_headers):
    headers = auth_headers(seed.hms)
    doc_id = (await _create(client, headers)).json()["id"]

    approved = await client.post(f"/api/v1/documents/{doc_id}/approve", headers=headers)
    assert approved.status_code == 200
    assert approved.json()["status"] == "APPROVED"
    assert approved.json()["approved_by"] == "hms@nordvik.no"

    resp = await client.post(
        f"/api/v1/documents/{doc_id}/versions",
        data={"version": "v2.0", "change_comment": "New evacuation routes"},
        files={"file": ("plan-v2.pdf", PDF, "application/pdf")},
        headers=headers,
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["status"] == "DRAFT"
    assert body["approved_by"] is None
    assert body["version"] == "v2.0"
    assert [v["sequence_no"] for v in body["versions"]] == [2, 1]
    assert [v["superseded_at"] is None for v in body["versions"]] == [True, False]


async def test_version_upload_with_stale_revision(client, seed, auth_headers):
    headers = auth_headers(seed.hms)
    doc_id = (await _create(client, headers)).json()["id"]
    await client.post(f"/api/v1/documents/{doc_id}/approve", headers=headers)

    resp = await client.post(
        f"/api/v1/documents/{doc_id}/versions",
        data={"version": "v2.0", "expected_revision": "1"},
        files={"file": ("plan-v2.pdf", PDF, "application/pdf")},
        headers=headers,
    )
    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "GEN_005"


async def test_approve_with_named_approver(client, seed, auth_headers):
    doc_id = (await _create(client, auth_headers(seed.hms))).json()["id"]
    resp = await client.post(
        f"/api/v1/documents/{doc_id}/approve",
        json={"approved_by": "Daglig leder"},
        headers=auth_headers(seed.admin),
    )
    assert resp.json()["approved_by"] == "Daglig leder"


async def test_patch_metadata(client, seed, auth_headers):
    doc_id = (await _create(client, auth_headers(seed.hms))).json()["id"]
    resp = await client.patch(
        f"/api/v1/documents/{doc_id}",
        json={"title": "Emergency Plan", "check_summary": "Drill twice a year"},
        headers=auth_headers(seed.leder),
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["slug"] == "emergency-plan"
    assert body["check_summary"] == "Drill twice a year"
    assert body["status"] == "DRAFT"
    assert body["revision"] == 2


@pytest.mark.parametrize("field", ["title", "version"])
async def test_patch_rejects_blank_text(client, seed, auth_headers, field):
    headers = auth_headers(seed.hms)
    doc_id = (await _create(client, headers)).json()["id"]
    resp = await client.patch(
        f"/api/v1/documents/{doc_id}", json={field: "   "}, headers=headers
    )
    assert resp.status_code == 422
    error = resp.json()["error"]
    assert error["code"] == "GEN_001"
    assert [f["field"] for f in error["detail"]["fields"]] == [field]

    stored = (await client.get(f"/api/v1/documents/{doc_id}", headers=headers)).json()
    assert stored["title"] == "Fire Safety Plan"
    assert stored["version"] == "v1.0"
    assert stored["revision"] == 1


# ─── delete ───────────────────────────────────────────────────────────────────

async def test_law_document_cannot_be_deleted(client, seed, auth_headers):
    doc_id = (
        await _create(client, auth_headers(seed.hms), title="Internkontrollforskriften", kind="LAW")
    ).json()["id"]
    resp = await client.delete(f"/api/v1/documents/{doc_id}", headers=auth_headers(seed.admin))
    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "DOC_012"
    still_there = await client.get(f"/api/v1/documents/{doc_id}", headers=auth_headers(seed.admin))
    assert still_there.status_code == 200


async def test_delete_document(client, seed, auth_headers):
    doc_id = (await _create(client, auth_headers(seed.hms))).json()["id"]
    resp = await client.delete(f"/api/v1/documents/{doc_id}", headers=auth_headers(seed.admin))
    assert resp.status_code == 204
    gone = await client.get(f"/api/v1/documents/{doc_id}", headers=auth_headers(seed.admin))
    assert gone.status_code == 404
    assert gone.json()["error"]["code"] == "DOC_001"


# ─── reads ────────────────────────────────────────────────────────────────────

async def test_other_tenant_sees_not_found(client, seed, auth_headers):
    doc_id = (await _create(client, auth_headers(seed.hms))).json()["id"]
    resp = await client.get(f"/api/v1/documents/{doc_id}", headers=auth_headers(seed.outsider))
    assert resp.status_code == 404


async def test_list_filters(client, seed, auth_headers):
    headers = auth_headers(seed.hms)
    await _create(client, headers, title="Plan A")
    await _create(client, headers, title="Checklist A", kind="CHECKLIST")
    resp = await client.get("/api/v1/documents", params={"kind": "CHECKLIST"}, headers=headers)
    assert [d["title"] for d in resp.json()["items"]] == ["Checklist A"]


async def test_due_for_review(client, seed, auth_headers):
    headers = auth_headers(seed.hms)
    await _create(client, headers, title="Old Plan", effective_from="2020-01-01")
    await _create(client, headers, title="New Plan")
    resp = await client.get("/api/v1/documents/due-for-review", headers=headers)
    assert [d["title"] for d in resp.json()["items"]] == ["Old Plan"]


async def test_templates(client, seed, auth_headers):
    headers = auth_headers(seed.hms)
    resp = await client.post(
        "/api/v1/documents/templates",
        json={"name": "Beredskapsplan", "default_review_interval_months": 6},
        headers=headers,
    )
    assert resp.status_code == 201
    template = resp.json()
    assert template["is_global"] is False

    listed = await client.get("/api/v1/documents/templates", headers=headers)
    assert [t["id"] for t in listed.json()] == [template["id"]]

    doc = await _create(client, headers, template_id=template["id"])
    assert doc.json()["review_interval_months"] == 6


# ─── downloads ────────────────────────────────────────────────────────────────

async def test_signed_download_round_trip(client, seed, auth_headers):
    doc_id = (await _create(client, auth_headers(seed.hms))).json()["id"]
    link = await client.get(
        f"/api/v1/documents/{doc_id}/download-url", headers=auth_headers(seed.ansatt)
    )
    assert link.status_code == 200
    assert link.json()["expires_in"] == 3600

    resp = await client.get(link.json()["url"])
    assert resp.status_code == 200
    assert resp.content == PDF
    assert resp.headers["content-type"] == "application/pdf"
    assert resp.headers["content-disposition"].startswith("attachment;")


async def test_bad_download_token(client, seed):
    resp = await client.get("/api/v1/files/not-a-token")
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "AUTH_002"


async def test_access_token_is_not_a_download_token(client, seed, auth_headers):
    token = auth_headers(seed.admin)["Authorization"].split()[1]
    resp = await client.get(f"/api/v1/files/{token}")
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "AUTH_003"
