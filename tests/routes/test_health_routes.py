from __future__ import annotations

from starlette.testclient import TestClient

from adminguard.main import create_app


def test_health_reports_policy_state(client, admin_headers):
    body = client.get("/health").json()
    assert body["status"] == "ok"
    assert body["service"] == "Admin Guard"
    assert body["policy"] == {"version": None, "source": None}

    client.post("/admin/api/policy/refresh", headers=admin_headers)
    assert client.get("/health").json()["policy"] == {"version": "v1", "source": "remote"}

    # Later lookups are served from the cache.
    client.get("/admin/api/policy", headers=admin_headers)
    assert client.get("/health").json()["policy"]["source"] == "cache"


def test_request_id_is_echoed_or_generated(client):
    r = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert r.headers["X-Request-ID"] == "req-123"
    generated = client.get("/health").headers["X-Request-ID"]
    assert len(generated) == 36


def test_metrics_exposes_counters(client, admin_headers):
    client.get("/admin/api/policy", headers=admin_headers)
    r = client.get("/metrics")
    assert r.status_code == 200
    assert 'adminguard_config_fetch_total{outcome="remote"}' in r.text


def test_metrics_can_be_disabled(make_runtime):
    app = create_app(make_runtime(METRICS_ENABLED=False))
    with TestClient(app) as c:
        assert c.get("/metrics").status_code == 404


def test_unsafe_request_id_is_replaced(client):
    r = client.get("/health", headers={"X-Request-ID": "bad id with spaces"})
    assert r.headers["X-Request-ID"] != "bad id with spaces"
    assert len(r.headers["X-Request-ID"]) == 36
