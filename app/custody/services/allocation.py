from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from app.custody.core.error_catalog import AppError, ErrorCatalog
from app.custody.core.logging import log_event
from app.custody.core.tiers import CustodianTier, PRICE_FIELDS, is_parent_of, missing_prices, normalize_tier, rule_for
from app.custody.db.models import Custodian, LedgerEntry, StockMovement, Variant
from app.custody.repos.custodians import CustodianRepository
from app.custody.repos.ledger import LedgerRepository
from app.custody.repos.movements import StockMovementRepository
from app.custody.services.availability import AvailabilityService
from app.custody.services.notifications import change_bus
from app.custody.services.transactions import ledger_transaction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AllocationItem:
    variant_id: str
    quantity: int
    prices: dict = field(default_factory=dict)


@dataclass
class AllocationResult:
    variant_id: str
    quantity: int
    allocated: bool
    entry: LedgerEntry | None = None
    available_after: int | None = None
    error: dict | None = None


def resolve_prices(supplied: dict, parent_entry: LedgerEntry | None, variant: Variant) -> dict:
    """Per field: supplied value, else the parent's row, else the catalog default."""
    resolved = {}
    for name in PRICE_FIELDS:
        value = supplied.get(name)
        if value is None and parent_entry is not None:
            value = getattr(parent_entry, name)
        if value is None:
            value = getattr(variant, name)
        resolved[name] = value
    return resolved


class AllocationService:
    def __init__(self, db, *, bus=None):
        self.db = db
        self.bus = bus or change_bus
        self.custodians = CustodianRepository(db)
        self.ledger = LedgerRepository(db)
        self.movements = StockMovementRepository(db)
        self.availability = AvailabilityService(db)

    def _require_custodian(self, custodian_id) -> Custodian:
        custodian = self.custodians.get(custodian_id)
        if custodian is None:
            raise AppError(ErrorCatalog.NOT_FOUND, details={"custodian_id": str(custodian_id)})
        if not custodian.is_active:
            raise AppError(ErrorCatalog.CUSTODIAN_INACTIVE, details={"custodian_id": str(custodian_id)})
        return custodian

    def _require_variant(self, variant_id) -> Variant:
        variant = self.db.get(Variant, variant_id)
        if variant is None:
            raise AppError(ErrorCatalog.NOT_FOUND, details={"variant_id": str(variant_id)})
        return variant

    def receive(self, actor: Custodian, variant_id, quantity: int, prices: dict | None = None) -> LedgerEntry:
        if normalize_tier(actor.tier) != CustodianTier.ADMIN:
            raise AppError(ErrorCatalog.PERMISSION_DENIED, details={"message": "only ADMIN receives stock"})
        if quantity <= 0:
            raise AppError(ErrorCatalog.VALIDATION_ERROR, details={"message": "quantity must be positive"})
        with ledger_transaction(self.db, "receipt"):
            variant = self._require_variant(variant_id)
            existing = self.ledger.get_entry(actor.id, variant.id, for_update=True)
            resolved = resolve_prices(prices or {}, existing, variant)
            entry = self.ledger.credit(
                custodian_id=actor.id,
                variant_id=variant.id,
                ledger=rule_for(actor.tier).ledger_name,
                delta=quantity,
                prices=resolved,
            )
            self.movements.add(
                StockMovement(
                    movement_type="receipt",
                    variant_id=variant.id,
                    quantity=quantity,
                    from_custodian_id=None,
                    to_custodian_id=actor.id,
                    performed_by=actor.id,
                    **resolved,
                )
            )
        self.bus.publish("ledger", actor.id)
        log_event(logger, "stock_received", custodian_id=str(actor.id), variant_id=str(variant_id), quantity=quantity)
        return entry

    def transfer(
        self,
        *,
        performed_by,
        parent: Custodian,
        child: Custodian,
        variant_id,
        quantity: int,
        prices: dict,
        reference_type: str | None = None,
        reference_id=None,
        now: datetime | None = None,
    ) -> LedgerEntry:
        """Credit ``child`` from ``parent``'s available pool inside the caller's transaction.

        The parent's quantity is left as is; only its version moves so a concurrent
        allocation against the same row fails at flush.
        """
        if quantity <= 0:
            raise AppError(ErrorCatalog.VALIDATION_ERROR, details={"message": "quantity must be positive"})
        if not is_parent_of(parent, child):
            raise AppError(
                ErrorCatalog.VALIDATION_ERROR,
                details={
                    "message": "allocation must follow a direct parent to child edge",
                    "parent_id": str(parent.id),
                    "child_id": str(child.id),
                },
            )
        if not child.is_active:
            raise AppError(ErrorCatalog.CUSTODIAN_INACTIVE, details={"custodian_id": str(child.id)})
        variant = self._require_variant(variant_id)

        parent_entry = self.ledger.get_entry(parent.id, variant.id, for_update=True)
        snapshot = self.availability.snapshot(parent.id, variant.id)
        if parent_entry is None or snapshot.available < quantity:
            raise AppError(
                ErrorCatalog.INSUFFICIENT_STOCK,
                details={
                    "variant_id": str(variant.id),
                    "requested": quantity,
                    "available": snapshot.available,
                },
            )

        resolved = resolve_prices(prices, parent_entry, variant)
        missing = missing_prices(child.tier, resolved)
        if missing:
            raise AppError(
                ErrorCatalog.MISSING_PRICE,
                details={"variant_id": str(variant.id), "missing": missing, "tier": child.tier},
            )

        entry = self.ledger.credit(
            custodian_id=child.id,
            variant_id=variant.id,
            ledger=rule_for(child.tier).ledger_name,
            delta=quantity,
            prices=resolved,
            now=now,
        )
        self.ledger.touch(parent_entry)
        self.movements.add(
            StockMovement(
                movement_type="allocation",
                variant_id=variant.id,
                quantity=quantity,
                from_custodian_id=parent.id,
                to_custodian_id=child.id,
                reference_type=reference_type,
                reference_id=reference_id,
                performed_by=performed_by,
                **resolved,
            )
        )
        self.db.flush()
        return entry

    def allocate(self, actor: Custodian, child_id, item: AllocationItem) -> AllocationResult:
        with ledger_transaction(self.db, "allocation"):
            child = self._require_custodian(child_id)
            entry = self.transfer(
                performed_by=actor.id,
                parent=actor,
                child=child,
                variant_id=item.variant_id,
                quantity=item.quantity,
                prices=item.prices,
            )
        available_after = self.availability.snapshot(actor.id, item.variant_id).available
        self.bus.publish("ledger", actor.id)
        self.bus.publish("ledger", child_id)
        log_event(
            logger,
            "allocation_committed",
            parent_id=str(actor.id),
            child_id=str(child_id),
            variant_id=str(item.variant_id),
            quantity=item.quantity,
            available_after=available_after,
        )
        return AllocationResult(
            variant_id=str(item.variant_id),
            quantity=item.quantity,
            allocated=True,
            entry=entry,
            available_after=available_after,
        )

    def allocate_batch(self, actor: Custodian, child_id, items: list[AllocationItem]) -> list[AllocationResult]:
        """Each item commits or fails on its own; the caller gets one result per item."""
        if not items:
            raise AppError(ErrorCatalog.VALIDATION_ERROR, details={"message": "items must not be empty"})
        results = []
        for item in items:
            try:
                results.append(self.allocate(actor, child_id, item))
            except AppError as exc:
                results.append(
                    AllocationResult(
                        variant_id=str(item.variant_id),
                        quantity=item.quantity,
                        allocated=False,
                        error=exc.as_payload(),
                    )
                )
        return results
