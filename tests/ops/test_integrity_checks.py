import uuid
from datetime import datetime
from decimal import Decimal

from app.custody.db.models import ClientOrder, ClientOrderItem, InventoryRequest, LedgerEntry, RemittanceRecord
from app.ops.integrity_checks import (
    check_forward_chain_resolved,
    check_order_totals,
    check_remittance_counts,
    check_remitted_orders_have_record,
    check_sellable_rows_priced,
    resolve_scope,
    run_integrity_checks,
)

from tests.custody_helpers import create_team, create_variant


def _order(db_session, agent, *, subtotal="10.00", **fields):
    order = ClientOrder(
        id=uuid.uuid4(),
        order_number=f"ORD-TEST-{uuid.uuid4().hex[:8]}",
        agent_id=agent.id,
        subtotal=Decimal(subtotal),
        total_amount=Decimal(subtotal),
        **fields,
    )
    db_session.add(order)
    db_session.flush()
    return order


def _item(db_session, order, variant, total: str):
    db_session.add(
        ClientOrderItem(
            id=uuid.uuid4(),
            order_id=order.id,
            variant_id=variant.id,
            quantity=1,
            unit_price=Decimal(total),
            total_price=Decimal(total),
        )
    )


def test_clean_team_has_no_findings(db_session):
    _, leader, (agent,) = create_team(db_session, suffix="OK")
    variant = create_variant(db_session, name="Clean")
    db_session.add(
        LedgerEntry(ledger="custody", custodian_id=agent.id, variant_id=variant.id, quantity=3, selling_price=Decimal("5"))
    )
    order = _order(db_session, agent)
    _item(db_session, order, variant, "10.00")
    db_session.commit()

    assert run_integrity_checks(db_session, resolve_scope(db_session, str(leader.id))) == []


def test_unpriced_sellable_row_is_flagged(db_session):
    _, _, (agent,) = create_team(db_session, suffix="UNP")
    variant = create_variant(db_session, name="Unpriced")
    db_session.add(LedgerEntry(ledger="custody", custodian_id=agent.id, variant_id=variant.id, quantity=3))
    db_session.commit()

    (finding,) = check_sellable_rows_priced(db_session, None)
    assert finding.severity == "WARN"
    assert finding.custodian_id == str(agent.id)


def test_order_totals_mismatch(db_session):
    _, _, (agent,) = create_team(db_session, suffix="TOT")
    variant = create_variant(db_session, name="Totals")
    order = _order(db_session, agent, subtotal="12.00")
    _item(db_session, order, variant, "10.00")
    db_session.commit()

    (finding,) = check_order_totals(db_session, [str(agent.id)])
    assert finding.severity == "CRITICAL"
    assert Decimal(finding.details["subtotal"]) == Decimal("12")
    assert Decimal(finding.details["items_total"]) == Decimal("10")


def test_remitted_order_without_record(db_session):
    _, _, (agent,) = create_team(db_session, suffix="REM")
    order = _order(db_session, agent, remitted=True, remittance_id=uuid.uuid4())
    db_session.commit()

    (finding,) = check_remitted_orders_have_record(db_session, None)
    assert finding.entity_id == str(order.id)


def test_remittance_count_disagreement(db_session):
    _, leader, (agent,) = create_team(db_session, suffix="CNT")
    record = RemittanceRecord(
        id=uuid.uuid4(),
        agent_id=agent.id,
        leader_id=leader.id,
        performed_by=agent.id,
        remittance_date=datetime.utcnow(),
        items_remitted=0,
        total_units=0,
        orders_count=2,
        total_revenue=Decimal("0"),
        order_ids=[],
        items=[],
        signature_url="https://signatures.example/x.png",
    )
    db_session.add(record)
    db_session.commit()

    (finding,) = check_remittance_counts(db_session, None)
    assert finding.details == {"orders_count": 2, "order_ids": 0, "linked_orders": 0}


def test_forward_chain_left_pending(db_session):
    admin, leader, (agent,) = create_team(db_session, suffix="FWD")
    variant = create_variant(db_session, name="Chain")
    original = InventoryRequest(
        id=uuid.uuid4(),
        requester_id=agent.id,
        approver_id=leader.id,
        variant_id=variant.id,
        requested_quantity=4,
        request_level="agent_to_leader",
        status="pending",
    )
    forwarded = InventoryRequest(
        id=uuid.uuid4(),
        requester_id=leader.id,
        approver_id=admin.id,
        variant_id=variant.id,
        requested_quantity=4,
        request_level="leader_to_admin",
        status="denied",
        parent_request_id=original.id,
    )
    db_session.add(original)
    db_session.flush()
    db_session.add(forwarded)
    db_session.commit()

    (finding,) = check_forward_chain_resolved(db_session, resolve_scope(db_session, "all"))
    assert finding.entity_id == str(original.id)
    assert finding.details["forwarded_status"] == "denied"
