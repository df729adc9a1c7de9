from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

from app.custody.core.error_catalog import AppError, ErrorCatalog
from app.custody.core.logging import log_event
from app.custody.core.tiers import CustodianTier, normalize_tier, rule_for
from app.custody.db.models import ClientOrder, ClientOrderItem, Custodian, StockMovement
from app.custody.repos.custodians import CustodianRepository
from app.custody.repos.ledger import LedgerRepository
from app.custody.repos.movements import StockMovementRepository
from app.custody.repos.orders import OrderQueryFilters, OrderRepository
from app.custody.services.notifications import change_bus
from app.custody.services.transactions import ledger_transaction

logger = logging.getLogger(__name__)

ORDER_ACTIONS = ("approve", "reject")
_CENT = Decimal("0.01")

# (actor tier, action) -> {allowed current stage: (next stage, next status)}
ORDER_TRANSITIONS = {
    (CustodianTier.LEADER, "approve"): {"none": ("leader_approved", "pending")},
    (CustodianTier.LEADER, "reject"): {"none": ("leader_rejected", "denied")},
    (CustodianTier.ADMIN, "approve"): {
        "none": ("admin_approved", "approved"),
        "leader_approved": ("admin_approved", "approved"),
    },
    (CustodianTier.ADMIN, "reject"): {
        "none": ("admin_rejected", "denied"),
        "leader_approved": ("admin_rejected", "denied"),
    },
}


@dataclass(frozen=True)
class OrderLine:
    variant_id: str
    quantity: int
    unit_price: Decimal | None = None


def _money(value) -> Decimal:
    return Decimal(value).quantize(_CENT, rounding=ROUND_HALF_UP)


def order_totals(lines: list[tuple[int, Decimal]], *, discount: Decimal, tax_rate: Decimal) -> dict:
    subtotal = _money(sum((Decimal(quantity) * Decimal(price) for quantity, price in lines), Decimal("0")))
    discount = _money(discount or 0)
    taxable = subtotal - discount
    tax_amount = _money(taxable * Decimal(tax_rate or 0))
    return {
        "subtotal": subtotal,
        "discount": discount,
        "tax_amount": tax_amount,
        "total_amount": _money(taxable + tax_amount),
    }


class OrderService:
    def __init__(self, db, *, bus=None):
        self.db = db
        self.bus = bus or change_bus
        self.repo = OrderRepository(db)
        self.ledger = LedgerRepository(db)
        self.custodians = CustodianRepository(db)
        self.movements = StockMovementRepository(db)

    def place_order(
        self,
        actor: Custodian,
        lines: list[OrderLine],
        *,
        client_ref: str | None = None,
        discount: Decimal = Decimal("0"),
        tax_rate: Decimal = Decimal("0"),
        payment_method: str | None = None,
        notes: str | None = None,
    ) -> ClientOrder:
        if not rule_for(actor.tier).sellable:
            raise AppError(ErrorCatalog.PERMISSION_DENIED, details={"message": "only sellable tiers place orders"})
        if not lines:
            raise AppError(ErrorCatalog.VALIDATION_ERROR, details={"message": "items must not be empty"})
        seen = set()
        for line in lines:
            if line.quantity <= 0:
                raise AppError(
                    ErrorCatalog.VALIDATION_ERROR,
                    details={"message": "quantity must be positive", "variant_id": str(line.variant_id)},
                )
            if str(line.variant_id) in seen:
                raise AppError(
                    ErrorCatalog.VALIDATION_ERROR,
                    details={"message": "duplicate variant in order", "variant_id": str(line.variant_id)},
                )
            seen.add(str(line.variant_id))

        now = datetime.utcnow()
        with ledger_transaction(self.db, "order.place"):
            priced = []
            for line in lines:
                entry = self.ledger.get_entry(actor.id, line.variant_id, for_update=True)
                held = entry.quantity if entry is not None else 0
                if held < line.quantity:
                    raise AppError(
                        ErrorCatalog.INSUFFICIENT_STOCK,
                        details={"variant_id": str(line.variant_id), "requested": line.quantity, "available": held},
                    )
                unit_price = line.unit_price if line.unit_price is not None else entry.selling_price
                if unit_price is None or unit_price <= 0:
                    raise AppError(
                        ErrorCatalog.MISSING_PRICE,
                        details={"variant_id": str(line.variant_id), "missing": ["selling_price"]},
                    )
                priced.append((line, entry, _money(unit_price)))

            totals = order_totals(
                [(line.quantity, unit_price) for line, _, unit_price in priced],
                discount=discount,
                tax_rate=tax_rate,
            )
            if totals["discount"] > totals["subtotal"]:
                raise AppError(
                    ErrorCatalog.VALIDATION_ERROR,
                    details={"message": "discount exceeds subtotal", "subtotal": str(totals["subtotal"])},
                )
            order = ClientOrder(
                order_number=self.repo.next_order_number(now),
                agent_id=actor.id,
                client_ref=client_ref,
                status="pending",
                stage="none",
                remitted=False,
                tax_rate=Decimal(tax_rate or 0),
                payment_method=payment_method,
                notes=notes,
                created_at=now,
                **totals,
            )
            self.db.add(order)
            self.db.flush()
            for line, entry, unit_price in priced:
                self.ledger.debit(entry, line.quantity, now)
                self.db.add(
                    ClientOrderItem(
                        order_id=order.id,
                        variant_id=line.variant_id,
                        quantity=line.quantity,
                        unit_price=unit_price,
                        total_price=_money(unit_price * line.quantity),
                        created_at=now,
                    )
                )
                self.movements.add(
                    StockMovement(
                        movement_type="order_reservation",
                        variant_id=line.variant_id,
                        quantity=line.quantity,
                        from_custodian_id=actor.id,
                        to_custodian_id=None,
                        reference_type="client_order",
                        reference_id=order.id,
                        selling_price=unit_price,
                        performed_by=actor.id,
                    )
                )
        self.bus.publish("orders", order.id)
        self.bus.publish("ledger", actor.id)
        log_event(
            logger,
            "order_placed",
            order_id=str(order.id),
            agent_id=str(actor.id),
            items=len(lines),
            total_amount=str(order.total_amount),
        )
        return order

    def decide_order(self, actor: Custodian, order_id, action: str, *, reason: str | None = None) -> ClientOrder:
        if action not in ORDER_ACTIONS:
            raise AppError(ErrorCatalog.VALIDATION_ERROR, details={"message": "unknown action", "action": action})
        tier = normalize_tier(actor.tier)
        with ledger_transaction(self.db, f"order.{action}"):
            order = self.repo.get_order(order_id, for_update=True)
            if order is None:
                raise AppError(ErrorCatalog.NOT_FOUND, details={"order_id": str(order_id)})
            self._require_ancestor(actor, tier, order)
            transitions = ORDER_TRANSITIONS.get((tier, action), {})
            if order.remitted or order.status != "pending" or order.stage not in transitions:
                raise AppError(
                    ErrorCatalog.INVALID_TRANSITION,
                    details={"order_id": str(order.id), "status": order.status, "stage": order.stage},
                )
            now = datetime.utcnow()
            order.stage, order.status = transitions[order.stage]
            order.updated_at = now
            if action == "approve":
                if tier == CustodianTier.LEADER:
                    order.leader_approved_by = actor.id
                    order.leader_approved_at = now
                else:
                    order.admin_approved_by = actor.id
                    order.admin_approved_at = now
            else:
                order.rejected_by = actor.id
                order.rejected_at = now
                order.rejection_reason = reason
                self._release(actor, order, now)
        self.bus.publish("orders", order.id)
        if action == "reject":
            self.bus.publish("ledger", order.agent_id)
        log_event(
            logger,
            "order_decided",
            order_id=str(order.id),
            action=action,
            actor_id=str(actor.id),
            stage=order.stage,
            status=order.status,
        )
        return order

    def _require_ancestor(self, actor: Custodian, tier: CustodianTier | None, order: ClientOrder) -> None:
        agent = self.custodians.get(order.agent_id)
        leader = self.custodians.get(agent.parent_id) if agent is not None and agent.parent_id else None
        if tier == CustodianTier.LEADER and leader is not None and leader.id == actor.id:
            return
        if tier == CustodianTier.ADMIN and leader is not None and leader.parent_id == actor.id:
            return
        raise AppError(ErrorCatalog.PERMISSION_DENIED, details={"order_id": str(order.id)})

    def _release(self, actor: Custodian, order: ClientOrder, now: datetime) -> None:
        agent = self.custodians.get(order.agent_id)
        for item in self.repo.get_items(order.id):
            self.ledger.credit(
                custodian_id=order.agent_id,
                variant_id=item.variant_id,
                ledger=rule_for(agent.tier).ledger_name,
                delta=item.quantity,
                prices={},
                now=now,
            )
            self.movements.add(
                StockMovement(
                    movement_type="order_release",
                    variant_id=item.variant_id,
                    quantity=item.quantity,
                    from_custodian_id=None,
                    to_custodian_id=order.agent_id,
                    reference_type="client_order",
                    reference_id=order.id,
                    performed_by=actor.id,
                    notes=order.rejection_reason,
                )
            )

    def list_orders(self, actor: Custodian, filters: OrderQueryFilters, *, limit: int, offset: int = 0) -> list[ClientOrder]:
        tier = normalize_tier(actor.tier)
        if tier == CustodianTier.AGENT:
            scope = [actor.id]
        else:
            scope = self.custodians.descendant_agent_ids(actor.id)
        if filters.agent_ids:
            allowed = {str(agent_id) for agent_id in scope}
            outside = [str(agent_id) for agent_id in filters.agent_ids if str(agent_id) not in allowed]
            if outside:
                raise AppError(ErrorCatalog.PERMISSION_DENIED, details={"agent_ids": outside})
            scope = list(filters.agent_ids)
        return self.repo.list_orders(replace(filters, agent_ids=scope), limit=limit, offset=offset)
