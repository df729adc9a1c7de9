from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import select

from app.custody.db.models import InventoryRequest


@dataclass(frozen=True)
class RequestQueryFilters:
    approver_id: str | None = None
    requester_id: str | None = None
    status: str | None = None
    request_level: str | None = None


class InventoryRequestRepository:
    def __init__(self, db):
        self.db = db

    def get_request(self, request_id, *, for_update: bool = False) -> InventoryRequest | None:
        query = select(InventoryRequest).where(InventoryRequest.id == request_id)
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        return self.db.execute(query).scalars().first()

    def pending_child(self, parent_request_id) -> InventoryRequest | None:
        return (
            self.db.execute(
                select(InventoryRequest)
                .where(
                    InventoryRequest.parent_request_id == parent_request_id,
                    InventoryRequest.status == "pending",
                )
                .with_for_update()
            )
            .scalars()
            .first()
        )

    def list_requests(self, filters: RequestQueryFilters, *, limit: int) -> list[InventoryRequest]:
        query = select(InventoryRequest)
        if filters.approver_id:
            query = query.where(InventoryRequest.approver_id == filters.approver_id)
        if filters.requester_id:
            query = query.where(InventoryRequest.requester_id == filters.requester_id)
        if filters.status:
            query = query.where(InventoryRequest.status == filters.status)
        if filters.request_level:
            query = query.where(InventoryRequest.request_level == filters.request_level)
        query = query.order_by(InventoryRequest.requested_at.desc(), InventoryRequest.id.asc()).limit(limit)
        return self.db.execute(query).scalars().all()
