from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel


class RemittanceCreateRequest(BaseModel):
    leader_id: UUID
    order_ids: list[UUID] | None = None
    signature_url: str | None = None
    signature_path: str | None = None


class RemittanceItemSnapshot(BaseModel):
    variant_id: str
    quantity: int
    unit_price: str | None = None
    selling_price: str | None = None
    dealer_price: str | None = None
    retail_price: str | None = None


class RemittanceRecordResponse(BaseModel):
    id: str
    agent_id: str
    leader_id: str
    performed_by: str
    remittance_date: datetime
    items_remitted: int
    total_units: int
    orders_count: int
    total_revenue: Decimal
    order_ids: list[str]
    items: list[RemittanceItemSnapshot]
    signature_url: str
    signature_path: str | None = None


class RemittanceResultResponse(BaseModel):
    remitted: bool
    record: RemittanceRecordResponse | None = None


class RemittanceListResponse(BaseModel):
    rows: list[RemittanceRecordResponse]
