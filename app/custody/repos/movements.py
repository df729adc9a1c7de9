from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import or_, select

from app.custody.db.models import StockMovement


@dataclass(frozen=True)
class MovementQueryFilters:
    custodian_id: str | None = None
    variant_id: str | None = None
    movement_type: str | None = None


class StockMovementRepository:
    def __init__(self, db):
        self.db = db

    def add(self, movement: StockMovement) -> StockMovement:
        self.db.add(movement)
        return movement

    def list_movements(self, filters: MovementQueryFilters, *, limit: int) -> list[StockMovement]:
        query = select(StockMovement)
        if filters.custodian_id:
            query = query.where(
                or_(
                    StockMovement.from_custodian_id == filters.custodian_id,
                    StockMovement.to_custodian_id == filters.custodian_id,
                )
            )
        if filters.variant_id:
            query = query.where(StockMovement.variant_id == filters.variant_id)
        if filters.movement_type:
            query = query.where(StockMovement.movement_type == filters.movement_type)
        query = query.order_by(StockMovement.created_at.desc()).limit(limit)
        return self.db.execute(query).scalars().all()
