from __future__ import annotations

from dataclasses import dataclass

from app.custody.repos.custodians import CustodianRepository
from app.custody.repos.ledger import LedgerRepository
from app.custody.repos.orders import OrderRepository


@dataclass(frozen=True)
class AvailabilitySnapshot:
    custodian_id: str
    variant_id: str
    total: int
    allocated_below: int
    reserved: int

    @property
    def available(self) -> int:
        return max(0, self.total - self.allocated_below - self.reserved)

    def as_dict(self) -> dict:
        return {
            "custodian_id": self.custodian_id,
            "variant_id": self.variant_id,
            "total": self.total,
            "allocated_below": self.allocated_below,
            "reserved": self.reserved,
            "available": self.available,
        }


def compute_availability(
    *,
    custodian_id,
    variant_id,
    total: int,
    child_quantities,
    reserved_quantities,
) -> AvailabilitySnapshot:
    """Pure availability math.

    Only direct children's holdings count as allocated below; grandchildren are already
    inside their parent's row. Reservations come from unresolved orders of descendant agents.
    """
    return AvailabilitySnapshot(
        custodian_id=str(custodian_id),
        variant_id=str(variant_id),
        total=int(total or 0),
        allocated_below=sum(int(quantity or 0) for quantity in child_quantities),
        reserved=sum(int(quantity or 0) for quantity in reserved_quantities),
    )


class AvailabilityService:
    def __init__(self, db):
        self.db = db
        self.custodians = CustodianRepository(db)
        self.ledger = LedgerRepository(db)
        self.orders = OrderRepository(db)

    def snapshot(self, custodian_id, variant_id) -> AvailabilitySnapshot:
        total = self.ledger.get_quantity(custodian_id, variant_id)
        allocated_below = self.ledger.sum_quantity(self.custodians.children_ids(custodian_id), variant_id)
        reserved = self.orders.unresolved_reserved_quantity(
            self.custodians.descendant_agent_ids(custodian_id), variant_id
        )
        return compute_availability(
            custodian_id=custodian_id,
            variant_id=variant_id,
            total=total,
            child_quantities=[allocated_below],
            reserved_quantities=[reserved],
        )

    def ledger_snapshots(self, custodian_id) -> list[tuple]:
        entries = self.ledger.list_for_custodian(custodian_id)
        return [(entry, self.snapshot(custodian_id, entry.variant_id)) for entry in entries]
