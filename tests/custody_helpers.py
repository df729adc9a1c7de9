import uuid
from decimal import Decimal

from app.custody.core.security import create_custodian_access_token
from app.custody.db.models import Brand, Custodian, Variant
from app.custody.db.seed import run_seed


def create_team(db_session, *, suffix: str = "A", agents: int = 1):
    """Seeded admin with one leader and ``agents`` agents below it."""
    admin = run_seed(db_session)
    leader = Custodian(id=uuid.uuid4(), name=f"Leader {suffix}", tier="LEADER", parent_id=admin.id)
    db_session.add(leader)
    db_session.flush()
    members = []
    for index in range(agents):
        agent = Custodian(id=uuid.uuid4(), name=f"Agent {suffix}{index}", tier="AGENT", parent_id=leader.id)
        db_session.add(agent)
        members.append(agent)
    db_session.commit()
    return admin, leader, members


def create_variant(db_session, *, name: str = "Grape 30ml", selling_price=None, unit_price=None):
    brand = Brand(id=uuid.uuid4(), name=f"Brand {name}")
    variant = Variant(
        id=uuid.uuid4(),
        brand_id=brand.id,
        name=name,
        sku=f"SKU-{uuid.uuid4().hex[:8]}",
        selling_price=Decimal(str(selling_price)) if selling_price is not None else None,
        unit_price=Decimal(str(unit_price)) if unit_price is not None else None,
    )
    db_session.add_all([brand, variant])
    db_session.commit()
    return variant


def token_for(custodian) -> str:
    return create_custodian_access_token(custodian)


def auth(custodian, *, key: str | None = None) -> dict:
    headers = {"Authorization": f"Bearer {token_for(custodian)}"}
    headers["Idempotency-Key"] = key or f"test-{uuid.uuid4().hex}"
    return headers


def receive(client, admin, variant, quantity: int, **prices):
    payload = {"variant_id": str(variant.id), "quantity": quantity}
    payload.update({name: str(value) for name, value in prices.items()})
    response = client.post("/custody/receipts", headers=auth(admin), json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def allocate(client, parent, child, variant, quantity: int, **prices):
    line = {"variant_id": str(variant.id), "quantity": quantity}
    line.update({name: str(value) for name, value in prices.items()})
    response = client.post(
        "/custody/allocations",
        headers=auth(parent),
        json={"child_id": str(child.id), "items": [line]},
    )
    assert response.status_code == 200, response.text
    return response.json()


def availability(client, viewer, custodian, variant) -> dict:
    response = client.get(
        f"/custody/availability/{custodian.id}/{variant.id}",
        headers={"Authorization": f"Bearer {token_for(viewer)}"},
    )
    assert response.status_code == 200, response.text
    return response.json()


def place_order(client, agent, variant, quantity: int, **extra):
    payload = {"items": [{"variant_id": str(variant.id), "quantity": quantity}], **extra}
    return client.post("/custody/orders", headers=auth(agent), json=payload)


def stock_team(client, db_session, *, suffix: str = "A", agents: int = 1, leader_quantity: int = 1000, price=50):
    """Admin receives stock priced at ``price`` and hands ``leader_quantity`` to the leader."""
    admin, leader, members = create_team(db_session, suffix=suffix, agents=agents)
    variant = create_variant(db_session, name=f"Variant {suffix}")
    receive(client, admin, variant, leader_quantity + 500, selling_price=price)
    allocate(client, admin, leader, variant, leader_quantity)
    return admin, leader, members, variant
