from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import func, select

from app.custody.core.metrics import metrics
from app.custody.core.tiers import CustodianTier
from app.custody.db.models import (
    ClientOrder,
    ClientOrderItem,
    Custodian,
    InventoryRequest,
    LedgerEntry,
    RemittanceRecord,
)
from app.custody.repos.custodians import CustodianRepository


SEVERITY_CRITICAL = "CRITICAL"
SEVERITY_WARN = "WARN"


@dataclass(frozen=True)
class IntegrityFinding:
    check_id: str
    severity: str
    custodian_id: str | None
    message: str
    entity: str
    entity_id: str | None
    details: dict


def resolve_scope(db, custodian: str) -> list | None:
    """Custodian ids covered by a scan; ``None`` means every custodian."""
    if custodian.lower() == "all":
        return None
    return [custodian] + [str(row.id) for row in CustodianRepository(db).descendants(custodian)]


def _scoped(query, column, scope):
    if scope is None:
        return query
    return query.where(column.in_(scope))


def _report(check_id: str, findings: list[IntegrityFinding]) -> list[IntegrityFinding]:
    if findings:
        metrics.increment_invariant_violation(check_id, len(findings))
    return findings


def check_ledger_non_negative(db, scope) -> list[IntegrityFinding]:
    rows = db.execute(
        _scoped(
            select(LedgerEntry.id, LedgerEntry.custodian_id, LedgerEntry.variant_id, LedgerEntry.quantity),
            LedgerEntry.custodian_id,
            scope,
        ).where(LedgerEntry.quantity < 0)
    ).all()
    return _report(
        "ledger_non_negative",
        [
            IntegrityFinding(
                check_id="ledger_non_negative",
                severity=SEVERITY_CRITICAL,
                custodian_id=str(row.custodian_id),
                message="Ledger row has negative quantity.",
                entity="ledger_entries",
                entity_id=str(row.id),
                details={"variant_id": str(row.variant_id), "quantity": row.quantity},
            )
            for row in rows
        ],
    )


def check_sellable_rows_priced(db, scope) -> list[IntegrityFinding]:
    rows = db.execute(
        _scoped(
            select(LedgerEntry.id, LedgerEntry.custodian_id, LedgerEntry.variant_id, LedgerEntry.selling_price)
            .join(Custodian, Custodian.id == LedgerEntry.custodian_id)
            .where(Custodian.tier == CustodianTier.AGENT.value)
            .where(LedgerEntry.quantity > 0),
            LedgerEntry.custodian_id,
            scope,
        )
    ).all()
    findings = [
        IntegrityFinding(
            check_id="sellable_row_priced",
            severity=SEVERITY_WARN,
            custodian_id=str(row.custodian_id),
            message="Sellable stock has no selling price.",
            entity="ledger_entries",
            entity_id=str(row.id),
            details={"variant_id": str(row.variant_id)},
        )
        for row in rows
        if row.selling_price is None or row.selling_price <= 0
    ]
    return _report("sellable_row_priced", findings)


def check_remitted_orders_have_record(db, scope) -> list[IntegrityFinding]:
    rows = db.execute(
        _scoped(
            select(ClientOrder.id, ClientOrder.agent_id, ClientOrder.remittance_id)
            .outerjoin(RemittanceRecord, RemittanceRecord.id == ClientOrder.remittance_id)
            .where(ClientOrder.remitted.is_(True))
            .where(RemittanceRecord.id.is_(None)),
            ClientOrder.agent_id,
            scope,
        )
    ).all()
    return _report(
        "remitted_order_has_record",
        [
            IntegrityFinding(
                check_id="remitted_order_has_record",
                severity=SEVERITY_CRITICAL,
                custodian_id=str(row.agent_id),
                message="Remitted order has no remittance record.",
                entity="client_orders",
                entity_id=str(row.id),
                details={"remittance_id": str(row.remittance_id) if row.remittance_id else None},
            )
            for row in rows
        ],
    )


def check_remittance_counts(db, scope) -> list[IntegrityFinding]:
    linked = dict(
        db.execute(
            select(ClientOrder.remittance_id, func.count(ClientOrder.id))
            .where(ClientOrder.remittance_id.is_not(None))
            .group_by(ClientOrder.remittance_id)
        ).all()
    )
    records = db.execute(_scoped(select(RemittanceRecord), RemittanceRecord.agent_id, scope)).scalars().all()
    findings = []
    for record in records:
        listed = len(record.order_ids or [])
        pointing = int(linked.get(record.id, 0))
        if record.orders_count != listed or record.orders_count != pointing:
            findings.append(
                IntegrityFinding(
                    check_id="remittance_counts",
                    severity=SEVERITY_CRITICAL,
                    custodian_id=str(record.agent_id),
                    message="Remittance order count disagrees with its orders.",
                    entity="remittance_records",
                    entity_id=str(record.id),
                    details={"orders_count": record.orders_count, "order_ids": listed, "linked_orders": pointing},
                )
            )
    return _report("remittance_counts", findings)


def check_order_totals(db, scope) -> list[IntegrityFinding]:
    rows = db.execute(
        _scoped(
            select(
                ClientOrder.id,
                ClientOrder.agent_id,
                ClientOrder.subtotal,
                func.coalesce(func.sum(ClientOrderItem.total_price), 0).label("items_total"),
            )
            .outerjoin(ClientOrderItem, ClientOrderItem.order_id == ClientOrder.id)
            .group_by(ClientOrder.id, ClientOrder.agent_id, ClientOrder.subtotal),
            ClientOrder.agent_id,
            scope,
        )
    ).all()
    findings = [
        IntegrityFinding(
            check_id="order_totals",
            severity=SEVERITY_CRITICAL,
            custodian_id=str(row.agent_id),
            message="Order subtotal differs from the sum of its items.",
            entity="client_orders",
            entity_id=str(row.id),
            details={"subtotal": str(row.subtotal), "items_total": str(row.items_total)},
        )
        for row in rows
        if Decimal(str(row.subtotal or 0)) != Decimal(str(row.items_total or 0))
    ]
    return _report("order_totals", findings)


def check_forward_chain_resolved(db, scope) -> list[IntegrityFinding]:
    original = InventoryRequest.__table__.alias("original")
    rows = db.execute(
        _scoped(
            select(InventoryRequest.id, InventoryRequest.status, original.c.id.label("original_id"), original.c.requester_id)
            .join(original, original.c.id == InventoryRequest.parent_request_id)
            .where(InventoryRequest.status.in_(("approved", "denied")))
            .where(original.c.status == "pending"),
            original.c.requester_id,
            scope,
        )
    ).all()
    return _report(
        "forward_chain_resolved",
        [
            IntegrityFinding(
                check_id="forward_chain_resolved",
                severity=SEVERITY_WARN,
                custodian_id=str(row.requester_id),
                message="Forwarded request resolved while its original is still pending.",
                entity="inventory_requests",
                entity_id=str(row.original_id),
                details={"forwarded_id": str(row.id), "forwarded_status": row.status},
            )
            for row in rows
        ],
    )


def run_integrity_checks(db, scope) -> list[IntegrityFinding]:
    findings: list[IntegrityFinding] = []
    findings.extend(check_ledger_non_negative(db, scope))
    findings.extend(check_sellable_rows_priced(db, scope))
    findings.extend(check_remitted_orders_have_record(db, scope))
    findings.extend(check_remittance_counts(db, scope))
    findings.extend(check_order_totals(db, scope))
    findings.extend(check_forward_chain_resolved(db, scope))
    return findings
