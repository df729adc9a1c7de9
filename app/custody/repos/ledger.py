from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select

from app.custody.core.tiers import PRICE_FIELDS
from app.custody.db.models import LedgerEntry


class LedgerRepository:
    """Stock ledger rows, one per (custodian, variant).

    Every mutation bumps ``version``; the mapper uses it as the version column so a
    concurrent writer that read an older row fails at flush time.
    """

    def __init__(self, db):
        self.db = db

    def get_entry(self, custodian_id, variant_id, *, for_update: bool = False) -> LedgerEntry | None:
        query = select(LedgerEntry).where(
            LedgerEntry.custodian_id == custodian_id,
            LedgerEntry.variant_id == variant_id,
        )
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        return self.db.execute(query).scalars().first()

    def get_quantity(self, custodian_id, variant_id) -> int:
        quantity = self.db.execute(
            select(LedgerEntry.quantity).where(
                LedgerEntry.custodian_id == custodian_id,
                LedgerEntry.variant_id == variant_id,
            )
        ).scalar_one_or_none()
        return int(quantity or 0)

    def sum_quantity(self, custodian_ids, variant_id) -> int:
        ids = list(custodian_ids)
        if not ids:
            return 0
        total = self.db.execute(
            select(func.coalesce(func.sum(LedgerEntry.quantity), 0)).where(
                LedgerEntry.custodian_id.in_(ids),
                LedgerEntry.variant_id == variant_id,
            )
        ).scalar_one()
        return int(total or 0)

    def list_for_custodian(self, custodian_id, *, positive_only: bool = False, for_update: bool = False):
        query = select(LedgerEntry).where(LedgerEntry.custodian_id == custodian_id)
        if positive_only:
            query = query.where(LedgerEntry.quantity > 0)
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        return self.db.execute(query.order_by(LedgerEntry.created_at.asc())).scalars().all()

    def credit(
        self,
        *,
        custodian_id,
        variant_id,
        ledger: str,
        delta: int,
        prices: dict,
        now: datetime | None = None,
    ) -> LedgerEntry:
        if delta < 0:
            raise ValueError("credit delta must not be negative")
        entry = self.get_entry(custodian_id, variant_id, for_update=True)
        supplied = {field: prices.get(field) for field in PRICE_FIELDS if prices.get(field) is not None}
        if entry is None:
            entry = LedgerEntry(
                ledger=ledger,
                custodian_id=custodian_id,
                variant_id=variant_id,
                quantity=delta,
                version=1,
                **supplied,
            )
            self.db.add(entry)
            self.db.flush()
            return entry
        entry.quantity = entry.quantity + delta
        for field, value in supplied.items():
            setattr(entry, field, value)
        self._bump(entry, now)
        return entry

    def debit(self, entry: LedgerEntry, delta: int, now: datetime | None = None) -> LedgerEntry:
        if delta < 0 or entry.quantity - delta < 0:
            raise ValueError("debit would make ledger quantity negative")
        entry.quantity = entry.quantity - delta
        self._bump(entry, now)
        return entry

    def debit_to_zero(self, entry: LedgerEntry, now: datetime | None = None) -> int:
        released = entry.quantity
        entry.quantity = 0
        self._bump(entry, now)
        return released

    def touch(self, entry: LedgerEntry) -> LedgerEntry:
        # Version-only bump: serializes writers on this row without changing its quantity or prices.
        entry.version = entry.version + 1
        return entry

    @staticmethod
    def _bump(entry: LedgerEntry, now: datetime | None) -> None:
        entry.version = entry.version + 1
        entry.updated_at = now or datetime.utcnow()
