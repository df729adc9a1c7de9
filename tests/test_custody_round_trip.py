from decimal import Decimal

from app.custody.db.models import LedgerEntry

from tests.custody_helpers import (
    allocate,
    auth,
    availability,
    create_team,
    create_variant,
    place_order,
    receive,
    token_for,
)


def _row(db_session, custodian, variant):
    db_session.expire_all()
    return (
        db_session.query(LedgerEntry)
        .filter(LedgerEntry.custodian_id == custodian.id, LedgerEntry.variant_id == variant.id)
        .one()
    )


def test_round_trip_allocation_order_approval_and_remittance(client, db_session):
    admin, leader, (agent,) = create_team(db_session, suffix="RT")
    variant = create_variant(db_session, name="Round Trip")

    receive(client, admin, variant, 1500, selling_price=50)
    allocate(client, admin, leader, variant, 1000)

    # The admin's own row is never decremented by allocation.
    assert _row(db_session, admin, variant).quantity == 1500
    assert availability(client, admin, admin, variant)["available"] == 500
    assert availability(client, leader, leader, variant)["available"] == 1000

    result = allocate(client, leader, agent, variant, 300)
    assert result["results"][0]["available_after"] == 700
    assert _row(db_session, leader, variant).quantity == 1000
    assert availability(client, leader, leader, variant)["available"] == 700

    order = place_order(client, agent, variant, 50)
    assert order.status_code == 201, order.text
    order_body = order.json()
    assert order_body["status"] == "pending"
    assert order_body["stage"] == "none"
    assert Decimal(order_body["total_amount"]) == Decimal("2500.00")
    assert _row(db_session, agent, variant).quantity == 250

    snapshot = availability(client, leader, leader, variant)
    assert snapshot == {
        "custodian_id": str(leader.id),
        "variant_id": str(variant.id),
        "total": 1000,
        "allocated_below": 250,
        "reserved": 50,
        "available": 700,
    }

    approved = client.post(
        f"/custody/orders/{order_body['id']}/actions",
        headers=auth(leader),
        json={"action": "approve"},
    )
    assert approved.status_code == 200, approved.text
    assert approved.json()["stage"] == "leader_approved"
    assert _row(db_session, agent, variant).quantity == 250

    snapshot = availability(client, leader, leader, variant)
    assert snapshot["reserved"] == 0
    assert snapshot["allocated_below"] == 250
    assert snapshot["available"] == 750

    remitted = client.post(
        "/custody/remittances",
        headers=auth(agent),
        json={"leader_id": str(leader.id), "signature_url": "https://signatures.example/rt.png"},
    )
    assert remitted.status_code == 200, remitted.text
    body = remitted.json()
    assert body["remitted"] is True
    record = body["record"]
    assert record["items_remitted"] == 1
    assert record["total_units"] == 250
    assert record["orders_count"] == 1
    assert record["order_ids"] == [order_body["id"]]
    assert Decimal(record["total_revenue"]) == Decimal("2500.00")
    assert record["items"][0]["quantity"] == 250
    assert record["items"][0]["selling_price"] == "50.00"

    assert _row(db_session, agent, variant).quantity == 0
    assert availability(client, leader, leader, variant)["available"] == 1000

    orders = client.get("/custody/orders", headers={"Authorization": f"Bearer {token_for(agent)}"})
    assert orders.status_code == 200
    (listed,) = orders.json()["rows"]
    assert listed["remitted"] is True
    assert listed["remittance_id"] == record["id"]


def test_round_trip_movement_history(client, db_session):
    admin, leader, (agent,) = create_team(db_session, suffix="MV")
    variant = create_variant(db_session, name="Movement")
    receive(client, admin, variant, 100, selling_price=20)
    allocate(client, admin, leader, variant, 60)
    allocate(client, leader, agent, variant, 10)
    assert place_order(client, agent, variant, 4).status_code == 201

    response = client.get(
        "/custody/movements",
        params={"custodian_id": str(agent.id)},
        headers={"Authorization": f"Bearer {token_for(leader)}"},
    )
    assert response.status_code == 200
    types = sorted(row["movement_type"] for row in response.json()["rows"])
    assert types == ["allocation", "order_reservation"]

    admin_view = client.get("/custody/movements", headers={"Authorization": f"Bearer {token_for(admin)}"})
    assert {row["movement_type"] for row in admin_view.json()["rows"]} == {
        "receipt",
        "allocation",
        "order_reservation",
    }
