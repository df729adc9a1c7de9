from app.custody.core.metrics import metrics

from tests.custody_helpers import auth, create_team, create_variant


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["trace_id"]


def test_trace_id_is_echoed(client):
    response = client.get("/health", headers={"X-Trace-ID": "trace-health"})
    assert response.headers["X-Trace-ID"] == "trace-health"
    assert response.json()["trace_id"] == "trace-health"


def test_metrics_expose_ledger_operations(client, db_session):
    admin, _, _ = create_team(db_session, suffix="MET")
    variant = create_variant(db_session, name="Metered")
    response = client.post("/custody/receipts", headers=auth(admin), json={"variant_id": str(variant.id), "quantity": 1})
    assert response.status_code == 201

    response = client.get("/custody/ops/metrics")
    if not metrics.enabled:
        assert response.status_code == 404
        return
    assert response.status_code == 200
    assert "ledger_operations_total" in response.text
    assert "http_requests_total" in response.text
