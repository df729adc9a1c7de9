from datetime import timedelta

from sqlalchemy import select

from app.custody.core.security import create_access_token, create_custodian_access_token
from app.custody.db.models import AuditEvent, IdempotencyRecord, LedgerEntry
from app.custody.services.idempotency import IdempotencyService

from tests.custody_helpers import auth, create_team, create_variant, stock_team, token_for


def test_receipt_replay_and_payload_mismatch(client, db_session):
    admin, _, _ = create_team(db_session, suffix="IDEM")
    variant = create_variant(db_session, name="Idem")
    headers = auth(admin, key="receipt-idem-1")
    payload = {"variant_id": str(variant.id), "quantity": 10}

    first = client.post("/custody/receipts", headers=headers, json=payload)
    assert first.status_code == 201

    replay = client.post("/custody/receipts", headers=headers, json=payload)
    assert replay.status_code == 201
    assert replay.json() == first.json()
    assert replay.headers.get("X-Idempotency-Result") == "IDEMPOTENCY_REPLAY"

    db_session.expire_all()
    entry = db_session.execute(select(LedgerEntry).where(LedgerEntry.custodian_id == admin.id)).scalars().one()
    assert entry.quantity == 10

    conflict = client.post("/custody/receipts", headers=headers, json={**payload, "quantity": 11})
    assert conflict.status_code == 409
    assert conflict.json()["code"] == "IDEMPOTENCY_KEY_REUSED_WITH_DIFFERENT_PAYLOAD"


def test_failed_mutation_replays_the_same_error(client, db_session):
    _, leader, (agent,), variant = stock_team(client, db_session, suffix="IDF")
    headers = auth(agent, key="order-idem-fail")
    payload = {"items": [{"variant_id": str(variant.id), "quantity": 5}]}

    first = client.post("/custody/orders", headers=headers, json=payload)
    assert first.status_code == 409
    assert first.json()["code"] == "INSUFFICIENT_STOCK"

    record = db_session.execute(
        select(IdempotencyRecord).where(IdempotencyRecord.idempotency_key == "order-idem-fail")
    ).scalars().one()
    assert record.state == "failed"
    assert record.status_code == 409

    replay = client.post("/custody/orders", headers=headers, json=payload)
    assert replay.status_code == 409
    assert replay.headers.get("X-Idempotency-Result") == "IDEMPOTENCY_REPLAY"


def test_failure_is_stored_after_the_session_was_closed(client, db_session, make_session):
    admin, _, _ = create_team(db_session, suffix="DET")
    db = make_session()
    context, replay = IdempotencyService(db).start(
        custodian_id=str(admin.id),
        endpoint="/custody/orders",
        method="POST",
        idempotency_key="closed-session",
        request_hash="hash-1",
    )
    assert replay is None

    db.rollback()
    db.close()
    context.record_failure(status_code=409, response_body={"code": "INSUFFICIENT_STOCK"})
    context.record_failure(status_code=500, response_body={"code": "INTERNAL_ERROR"})

    record = db_session.execute(
        select(IdempotencyRecord).where(IdempotencyRecord.idempotency_key == "closed-session")
    ).scalars().one()
    assert record.state == "failed"
    assert record.status_code == 409

    _, replay = IdempotencyService(make_session()).start(
        custodian_id=str(admin.id),
        endpoint="/custody/orders",
        method="POST",
        idempotency_key="closed-session",
        request_hash="hash-1",
    )
    assert replay.status_code == 409
    assert replay.response_body == {"code": "INSUFFICIENT_STOCK"}


def test_mutations_require_idempotency_key(client, db_session):
    admin, _, _ = create_team(db_session, suffix="NOKEY")
    variant = create_variant(db_session, name="No key")
    response = client.post(
        "/custody/receipts",
        headers={"Authorization": f"Bearer {token_for(admin)}"},
        json={"variant_id": str(variant.id), "quantity": 1},
    )
    assert response.status_code == 400
    assert response.json()["code"] == "IDEMPOTENCY_KEY_REQUIRED"


def test_successful_mutations_are_audited(client, db_session):
    admin, leader, (agent,), variant = stock_team(client, db_session, suffix="AUD")
    headers = auth(admin)
    headers["X-Trace-ID"] = "trace-audit-1"
    client.post("/custody/receipts", headers=headers, json={"variant_id": str(variant.id), "quantity": 3})

    db_session.expire_all()
    events = db_session.execute(
        select(AuditEvent).where(AuditEvent.trace_id == "trace-audit-1")
    ).scalars().all()
    assert [event.action for event in events] == ["stock.receive"]
    event = events[0]
    assert event.entity_type == "ledger_entry"
    assert event.result == "success"
    assert event.event_metadata == {"quantity": 3, "actor_tier": "ADMIN"}
    assert event.actor == admin.name


def test_error_envelope_carries_trace_id(client, db_session):
    _, leader, (agent,), variant = stock_team(client, db_session, suffix="ENV")
    headers = auth(agent)
    headers["X-Trace-ID"] = "trace-envelope"
    response = client.post(
        "/custody/orders",
        headers=headers,
        json={"items": [{"variant_id": str(variant.id), "quantity": 1}]},
    )
    assert response.status_code == 409
    assert response.headers["X-Trace-ID"] == "trace-envelope"
    assert response.json() == {
        "code": "INSUFFICIENT_STOCK",
        "message": "Insufficient available stock",
        "details": {"variant_id": str(variant.id), "requested": 1, "available": 0},
        "trace_id": "trace-envelope",
    }


def test_request_validation_errors_use_envelope(client, db_session):
    admin, _, _ = create_team(db_session, suffix="VAL")
    response = client.post("/custody/receipts", headers=auth(admin), json={"quantity": 0})
    assert response.status_code == 422
    body = response.json()
    assert body["code"] == "VALIDATION_ERROR"
    fields = {error["field"] for error in body["details"]["errors"]}
    assert {"variant_id", "quantity"} <= fields


def test_token_checks(client, db_session):
    admin, leader, _ = create_team(db_session, suffix="TOK")
    url = f"/custody/ledger/{leader.id}"

    missing = client.get(url)
    assert missing.status_code == 401

    garbage = client.get(url, headers={"Authorization": "Bearer not-a-token"})
    assert garbage.status_code == 401
    assert garbage.json()["code"] == "INVALID_TOKEN"

    expired = create_custodian_access_token(leader, expires_delta=timedelta(minutes=-1))
    assert client.get(url, headers={"Authorization": f"Bearer {expired}"}).status_code == 401

    wrong_tier = create_access_token({"sub": str(leader.id), "tier": "ADMIN"})
    response = client.get(url, headers={"Authorization": f"Bearer {wrong_tier}"})
    assert response.status_code == 403
    assert response.json()["code"] == "PERMISSION_DENIED"

    leader.is_active = False
    db_session.commit()
    inactive = client.get(url, headers={"Authorization": f"Bearer {token_for(leader)}"})
    assert inactive.status_code == 403
    assert inactive.json()["code"] == "CUSTODIAN_INACTIVE"
