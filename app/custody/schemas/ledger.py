from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field

from app.custody.core.tiers import PRICE_FIELDS


class PriceFields(BaseModel):
    unit_price: Decimal | None = Field(default=None, gt=0)
    selling_price: Decimal | None = Field(default=None, gt=0)
    dealer_price: Decimal | None = Field(default=None, gt=0)
    retail_price: Decimal | None = Field(default=None, gt=0)

    def supplied(self) -> dict:
        return {name: getattr(self, name) for name in PRICE_FIELDS if getattr(self, name) is not None}


class AvailabilityResponse(BaseModel):
    custodian_id: str
    variant_id: str
    total: int
    allocated_below: int
    reserved: int
    available: int


class LedgerEntryResponse(BaseModel):
    id: str
    ledger: str
    custodian_id: str
    variant_id: str
    quantity: int
    unit_price: Decimal | None = None
    selling_price: Decimal | None = None
    dealer_price: Decimal | None = None
    retail_price: Decimal | None = None
    version: int
    updated_at: datetime | None = None


class LedgerRowResponse(LedgerEntryResponse):
    allocated_below: int
    reserved: int
    available: int


class LedgerListResponse(BaseModel):
    custodian_id: str
    tier: str
    rows: list[LedgerRowResponse]


class ReceiptRequest(PriceFields):
    variant_id: UUID
    quantity: int = Field(gt=0)


class StockMovementResponse(BaseModel):
    id: str
    movement_type: str
    variant_id: str
    quantity: int
    from_custodian_id: str | None = None
    to_custodian_id: str | None = None
    reference_type: str | None = None
    reference_id: str | None = None
    unit_price: Decimal | None = None
    selling_price: Decimal | None = None
    dealer_price: Decimal | None = None
    retail_price: Decimal | None = None
    performed_by: str
    notes: str | None = None
    created_at: datetime


class StockMovementListResponse(BaseModel):
    rows: list[StockMovementResponse]
