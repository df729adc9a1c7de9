from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

from app.custody.core.config import settings
from app.custody.core.error_catalog import AppError, ErrorCatalog
from app.custody.core.logging import log_event
from app.custody.core.tiers import CustodianTier, PRICE_FIELDS, normalize_tier
from app.custody.db.models import Custodian, RemittanceRecord, StockMovement
from app.custody.repos.ledger import LedgerRepository
from app.custody.repos.movements import StockMovementRepository
from app.custody.repos.orders import OrderRepository
from app.custody.repos.remittances import RemittanceQueryFilters, RemittanceRepository
from app.custody.services.notifications import change_bus
from app.custody.services.transactions import ledger_transaction

logger = logging.getLogger(__name__)


def _price(value) -> str | None:
    return None if value is None else format(Decimal(value), "f")


class RemittanceService:
    """Closes an agent's selling cycle.

    Unsold stock is zeroed back to the leader and the cycle's orders are frozen into one
    record. The signature must already be stored; nothing here talks to the object store.
    """

    def __init__(self, db, *, bus=None):
        self.db = db
        self.bus = bus or change_bus
        self.repo = RemittanceRepository(db)
        self.orders = OrderRepository(db)
        self.ledger = LedgerRepository(db)
        self.movements = StockMovementRepository(db)

    def remit(
        self,
        actor: Custodian,
        leader_id,
        *,
        order_ids: list | None = None,
        signature_url: str | None = None,
        signature_path: str | None = None,
    ) -> RemittanceRecord | None:
        if normalize_tier(actor.tier) != CustodianTier.AGENT:
            raise AppError(ErrorCatalog.PERMISSION_DENIED, details={"message": "only agents remit"})
        if actor.parent_id is None or str(actor.parent_id) != str(leader_id):
            raise AppError(
                ErrorCatalog.VALIDATION_ERROR,
                details={"message": "agents remit only to their own leader", "leader_id": str(leader_id)},
            )
        if not (signature_url or "").strip():
            raise AppError(ErrorCatalog.MISSING_SIGNATURE)

        now = datetime.utcnow()
        with ledger_transaction(self.db, "remittance"):
            selected = self._select_orders(actor, order_ids)
            entries = self.ledger.list_for_custodian(actor.id, positive_only=True, for_update=True)
            if not entries and not selected:
                log_event(logger, "remittance_noop", agent_id=str(actor.id))
                return None

            items = [
                {
                    "variant_id": str(entry.variant_id),
                    "quantity": entry.quantity,
                    **{name: _price(getattr(entry, name)) for name in PRICE_FIELDS},
                }
                for entry in entries
            ]
            record = self.repo.create(
                RemittanceRecord(
                    agent_id=actor.id,
                    leader_id=actor.parent_id,
                    performed_by=actor.id,
                    remittance_date=now,
                    items_remitted=len(items),
                    total_units=sum(item["quantity"] for item in items),
                    orders_count=len(selected),
                    total_revenue=sum((order.total_amount for order in selected), Decimal("0")),
                    order_ids=[str(order.id) for order in selected],
                    items=items,
                    signature_url=signature_url.strip(),
                    signature_path=signature_path,
                    created_at=now,
                )
            )
            for entry in entries:
                released = self.ledger.debit_to_zero(entry, now)
                self.movements.add(
                    StockMovement(
                        movement_type="remittance_return",
                        variant_id=entry.variant_id,
                        quantity=released,
                        from_custodian_id=actor.id,
                        to_custodian_id=actor.parent_id,
                        reference_type="remittance",
                        reference_id=record.id,
                        performed_by=actor.id,
                        **{name: getattr(entry, name) for name in PRICE_FIELDS},
                    )
                )
            updated = self.orders.mark_remitted(
                [order.id for order in selected], remittance_id=record.id, now=now
            )
            if updated != len(selected):
                raise AppError(
                    ErrorCatalog.CONCURRENT_MODIFICATION,
                    details={"message": "orders were remitted concurrently", "expected": len(selected), "updated": updated},
                )

        self.bus.publish("remittances", record.id)
        self.bus.publish("ledger", actor.id)
        self.bus.publish("orders", actor.id)
        log_event(
            logger,
            "remittance_committed",
            remittance_id=str(record.id),
            agent_id=str(actor.id),
            leader_id=str(record.leader_id),
            items_remitted=record.items_remitted,
            total_units=record.total_units,
            orders_count=record.orders_count,
            total_revenue=str(record.total_revenue),
        )
        return record

    def _select_orders(self, actor: Custodian, order_ids: list | None):
        if order_ids is None:
            last = self.repo.last_for_agent(actor.id)
            return self.orders.remittable_orders(actor.id, since=last.remittance_date if last else None)

        wanted = {str(order_id) for order_id in order_ids}
        found = self.orders.get_orders(list(wanted))
        foreign = sorted(wanted - {str(order.id) for order in found if str(order.agent_id) == str(actor.id)})
        if foreign:
            raise AppError(
                ErrorCatalog.VALIDATION_ERROR,
                details={"message": "order_ids must belong to the remitting agent", "order_ids": foreign},
            )
        return [order for order in self.orders.remittable_orders(actor.id) if str(order.id) in wanted]

    def list_records(self, actor: Custodian, filters: RemittanceQueryFilters, *, limit: int | None = None):
        tier = normalize_tier(actor.tier)
        if tier == CustodianTier.AGENT:
            filters = RemittanceQueryFilters(
                agent_id=actor.id, leader_id=filters.leader_id, from_date=filters.from_date, to_date=filters.to_date
            )
        elif tier == CustodianTier.LEADER:
            filters = RemittanceQueryFilters(
                agent_id=filters.agent_id, leader_id=actor.id, from_date=filters.from_date, to_date=filters.to_date
            )
        return self.repo.list_records(filters, limit=limit or settings.LIST_MAX_PAGE_SIZE)
