from __future__ import annotations

from uuid import UUID

from pydantic import BaseModel, Field

from app.custody.schemas.ledger import LedgerEntryResponse, PriceFields


class AllocationLine(PriceFields):
    variant_id: UUID
    quantity: int = Field(gt=0)


class AllocationRequest(BaseModel):
    child_id: UUID
    items: list[AllocationLine] = Field(min_length=1)

    model_config = {
        "json_schema_extra": {
            "example": {
                "child_id": "1b0e6a7e-3c55-4f7a-9d1c-2f1a9e7c0b11",
                "items": [
                    {"variant_id": "6f5d3c1e-8a2b-4c7d-9e0f-1a2b3c4d5e6f", "quantity": 300, "selling_price": 50},
                ],
            }
        }
    }


class AllocationItemResult(BaseModel):
    variant_id: str
    quantity: int
    allocated: bool
    entry: LedgerEntryResponse | None = None
    available_after: int | None = None
    error: dict | None = None


class AllocationBatchResponse(BaseModel):
    parent_id: str
    child_id: str
    allocated_count: int
    failed_count: int
    results: list[AllocationItemResult]
