from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, select, update

from app.custody.db.models import ClientOrder, ClientOrderItem

UNRESOLVED_EXCLUDED_STAGES = ("leader_approved", "admin_approved")


@dataclass(frozen=True)
class OrderQueryFilters:
    agent_ids: list | None = None
    status: str | None = None
    stage: str | None = None
    remitted: bool | None = None
    from_date: datetime | None = None
    to_date: datetime | None = None


class OrderRepository:
    def __init__(self, db):
        self.db = db

    def get_order(self, order_id, *, for_update: bool = False) -> ClientOrder | None:
        query = select(ClientOrder).where(ClientOrder.id == order_id)
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        return self.db.execute(query).scalars().first()

    def get_orders(self, order_ids) -> list[ClientOrder]:
        ids = list(order_ids)
        if not ids:
            return []
        return self.db.execute(select(ClientOrder).where(ClientOrder.id.in_(ids))).scalars().all()

    def get_items(self, order_id) -> list[ClientOrderItem]:
        return (
            self.db.execute(
                select(ClientOrderItem)
                .where(ClientOrderItem.order_id == order_id)
                .order_by(ClientOrderItem.created_at.asc())
            )
            .scalars()
            .all()
        )

    def unresolved_reserved_quantity(self, agent_ids, variant_id) -> int:
        """Units of ``variant_id`` held by pending orders not yet approved by an ancestor."""
        ids = list(agent_ids)
        if not ids:
            return 0
        total = self.db.execute(
            select(func.coalesce(func.sum(ClientOrderItem.quantity), 0))
            .join(ClientOrder, ClientOrderItem.order_id == ClientOrder.id)
            .where(
                ClientOrder.agent_id.in_(ids),
                ClientOrder.status == "pending",
                ClientOrder.stage.notin_(UNRESOLVED_EXCLUDED_STAGES),
                ClientOrderItem.variant_id == variant_id,
            )
        ).scalar_one()
        return int(total or 0)

    def list_orders(self, filters: OrderQueryFilters, *, limit: int, offset: int = 0) -> list[ClientOrder]:
        query = select(ClientOrder)
        if filters.agent_ids is not None:
            query = query.where(ClientOrder.agent_id.in_(filters.agent_ids))
        if filters.status:
            query = query.where(ClientOrder.status == filters.status)
        if filters.stage:
            query = query.where(ClientOrder.stage == filters.stage)
        if filters.remitted is not None:
            query = query.where(ClientOrder.remitted.is_(filters.remitted))
        if filters.from_date:
            query = query.where(ClientOrder.created_at >= filters.from_date)
        if filters.to_date:
            query = query.where(ClientOrder.created_at <= filters.to_date)
        query = query.order_by(ClientOrder.created_at.desc()).offset(offset).limit(limit)
        return self.db.execute(query).scalars().all()

    def remittable_orders(self, agent_id, *, since: datetime | None = None) -> list[ClientOrder]:
        query = (
            select(ClientOrder)
            .where(
                ClientOrder.agent_id == agent_id,
                ClientOrder.remitted.is_(False),
                ClientOrder.status != "denied",
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        if since is not None:
            query = query.where(ClientOrder.created_at > since)
        return self.db.execute(query.order_by(ClientOrder.created_at.asc())).scalars().all()

    def mark_remitted(self, order_ids, *, remittance_id, now: datetime) -> int:
        ids = list(order_ids)
        if not ids:
            return 0
        result = self.db.execute(
            update(ClientOrder)
            .where(ClientOrder.id.in_(ids), ClientOrder.remitted.is_(False))
            .values(remitted=True, remitted_at=now, remittance_id=remittance_id, updated_at=now)
            .execution_options(synchronize_session="fetch")
        )
        return int(result.rowcount or 0)

    def next_order_number(self, now: datetime) -> str:
        prefix = f"ORD-{now:%Y%m%d}-"
        count = self.db.execute(
            select(func.count()).select_from(ClientOrder).where(ClientOrder.order_number.like(f"{prefix}%"))
        ).scalar_one()
        return f"{prefix}{int(count or 0) + 1:06d}"
