"""Integration tests: health, metrics and response headers."""
import pytest

pytestmark = pytest.mark.asyncio


async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] in {"healthy", "degraded"}
    assert body["storage_backend"] == "local"
    assert "version" in body


async def test_metrics(client):
    resp = await client.get("/metrics")
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/plain")


async def test_metrics_count_error_codes(client, seed):
    await client.get("/api/v1/auth/me")
    resp = await client.get("/metrics")
    assert 'hmsnova_app_errors_total{code="AUTH_003"}' in resp.text
    assert "hmsnova_http_requests_total" in resp.text


async def test_correlation_id_is_echoed(client):
    resp = await client.get("/health", headers={"X-Correlation-ID": "req-abc-123"})
    assert resp.headers["X-Correlation-ID"] == "req-abc-123"


async def test_correlation_id_is_generated(client):
    resp = await client.get("/health")
    assert len(resp.headers["X-Correlation-ID"]) == 36


async def test_error_envelope_carries_correlation_id(client, seed):
    resp = await client.get("/api/v1/auth/me", headers={"X-Correlation-ID": "trace-401"})
    assert resp.status_code == 401
    assert resp.headers["X-Correlation-ID"] == "trace-401"
    assert resp.json()["success"] is False
