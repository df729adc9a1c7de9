import uuid
from decimal import Decimal

from sqlalchemy import select

from app.custody.db.models import ClientOrder, StockMovement

from tests.custody_helpers import allocate, auth, availability, create_team, place_order, stock_team, token_for

SIGNATURE = "https://signatures.example/agent.png"


def _remit(client, agent, leader_id, **payload):
    return client.post(
        "/custody/remittances",
        headers=auth(agent),
        json={"leader_id": str(leader_id), **payload},
    )


def test_remittance_with_nothing_to_remit_is_a_noop(client, db_session):
    _, leader, (agent,) = create_team(db_session, suffix="NOOP")
    response = _remit(client, agent, leader.id, signature_url=SIGNATURE)
    assert response.status_code == 200
    assert response.json() == {"remitted": False, "record": None}

    history = client.get("/custody/remittances", headers={"Authorization": f"Bearer {token_for(agent)}"})
    assert history.json()["rows"] == []


def test_remittance_requires_signature(client, db_session):
    _, leader, (agent,), variant = stock_team(client, db_session, suffix="SIG")
    allocate(client, leader, agent, variant, 10)

    for signature in (None, "   "):
        response = _remit(client, agent, leader.id, signature_url=signature)
        assert response.status_code == 422
        assert response.json()["code"] == "MISSING_SIGNATURE"
    assert availability(client, leader, agent, variant)["total"] == 10


def test_remittance_only_to_own_leader(client, db_session):
    _, leader, (agent,), variant = stock_team(client, db_session, suffix="OWN")
    _, other_leader, _ = create_team(db_session, suffix="OWN2")
    allocate(client, leader, agent, variant, 10)

    response = _remit(client, agent, other_leader.id, signature_url=SIGNATURE)
    assert response.status_code == 422
    assert response.json()["code"] == "VALIDATION_ERROR"

    not_agent = client.post(
        "/custody/remittances",
        headers=auth(leader),
        json={"leader_id": str(leader.id), "signature_url": SIGNATURE},
    )
    assert not_agent.status_code == 403


def test_remittance_zeroes_stock_and_is_never_repeated(client, db_session):
    _, leader, (agent,), variant = stock_team(client, db_session, suffix="TWICE")
    allocate(client, leader, agent, variant, 40)
    order_id = place_order(client, agent, variant, 15).json()["id"]

    first = _remit(client, agent, leader.id, signature_url=SIGNATURE, signature_path="a/b/1.png")
    assert first.status_code == 200, first.text
    record = first.json()["record"]
    assert record["total_units"] == 25
    assert record["orders_count"] == 1
    assert record["signature_path"] == "a/b/1.png"
    assert availability(client, leader, agent, variant)["total"] == 0

    db_session.expire_all()
    movements = db_session.execute(
        select(StockMovement).where(StockMovement.movement_type == "remittance_return")
    ).scalars().all()
    assert [(m.quantity, str(m.reference_id)) for m in movements] == [(25, record["id"])]

    second = _remit(client, agent, leader.id, signature_url=SIGNATURE)
    assert second.status_code == 200
    assert second.json()["remitted"] is False

    explicit = _remit(client, agent, leader.id, signature_url=SIGNATURE, order_ids=[order_id])
    assert explicit.json()["remitted"] is False

    order = db_session.get(ClientOrder, uuid.UUID(order_id))
    assert order.remitted is True
    assert str(order.remittance_id) == record["id"]


def test_remittance_excludes_denied_and_honours_subset(client, db_session):
    _, leader, (agent,), variant = stock_team(client, db_session, suffix="SUB")
    allocate(client, leader, agent, variant, 50)
    kept = place_order(client, agent, variant, 5).json()["id"]
    later = place_order(client, agent, variant, 6).json()["id"]
    denied = place_order(client, agent, variant, 7).json()["id"]
    rejected = client.post(
        f"/custody/orders/{denied}/actions",
        headers=auth(leader),
        json={"action": "reject", "reason": "bad address"},
    )
    assert rejected.status_code == 200

    response = _remit(client, agent, leader.id, signature_url=SIGNATURE, order_ids=[kept, denied])
    assert response.status_code == 200, response.text
    record = response.json()["record"]
    assert record["order_ids"] == [kept]
    assert record["orders_count"] == 1
    assert Decimal(record["total_revenue"]) == Decimal("250.00")
    # Rejected units went back to the agent before being returned.
    assert record["total_units"] == 50 - 5 - 6

    db_session.expire_all()
    assert db_session.get(ClientOrder, uuid.UUID(later)).remitted is False


def test_remittance_rejects_foreign_orders(client, db_session):
    _, leader, agents, variant = stock_team(client, db_session, suffix="FOR", agents=2)
    allocate(client, leader, agents[0], variant, 10)
    allocate(client, leader, agents[1], variant, 10)
    foreign = place_order(client, agents[1], variant, 1).json()["id"]

    response = _remit(client, agents[0], leader.id, signature_url=SIGNATURE, order_ids=[foreign])
    assert response.status_code == 422
    assert response.json()["details"]["order_ids"] == [foreign]
    assert availability(client, leader, agents[0], variant)["total"] == 10


def test_remittance_history_is_scoped_by_tier(client, db_session):
    admin, leader, agents, variant = stock_team(client, db_session, suffix="HIS", agents=2)
    for agent in agents:
        allocate(client, leader, agent, variant, 3)
        assert _remit(client, agent, leader.id, signature_url=SIGNATURE).json()["remitted"] is True

    own = client.get("/custody/remittances", headers={"Authorization": f"Bearer {token_for(agents[0])}"})
    assert [row["agent_id"] for row in own.json()["rows"]] == [str(agents[0].id)]

    as_leader = client.get("/custody/remittances", headers={"Authorization": f"Bearer {token_for(leader)}"})
    assert len(as_leader.json()["rows"]) == 2

    as_admin = client.get(
        "/custody/remittances",
        params={"agent_id": str(agents[1].id)},
        headers={"Authorization": f"Bearer {token_for(admin)}"},
    )
    assert [row["agent_id"] for row in as_admin.json()["rows"]] == [str(agents[1].id)]
