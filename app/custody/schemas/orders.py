from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field


class OrderItemCreate(BaseModel):
    variant_id: UUID
    quantity: int = Field(gt=0)
    unit_price: Decimal | None = Field(default=None, gt=0)


class OrderCreateRequest(BaseModel):
    client_ref: str | None = None
    items: list[OrderItemCreate] = Field(min_length=1)
    discount: Decimal = Field(default=Decimal("0"), ge=0)
    tax_rate: Decimal = Field(default=Decimal("0"), ge=0, le=1)
    payment_method: str | None = None
    notes: str | None = None


class OrderActionRequest(BaseModel):
    action: Literal["approve", "reject"]
    reason: str | None = None


class OrderItemResponse(BaseModel):
    id: str
    variant_id: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal


class OrderResponse(BaseModel):
    id: str
    order_number: str
    agent_id: str
    client_ref: str | None = None
    status: str
    stage: str
    remitted: bool
    subtotal: Decimal
    discount: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    payment_method: str | None = None
    notes: str | None = None
    rejection_reason: str | None = None
    remittance_id: str | None = None
    remitted_at: datetime | None = None
    created_at: datetime
    items: list[OrderItemResponse]


class OrderListResponse(BaseModel):
    rows: list[OrderResponse]
