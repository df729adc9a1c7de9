from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field

from app.custody.schemas.ledger import PriceFields


class InventoryRequestLine(BaseModel):
    variant_id: UUID
    quantity: int = Field(gt=0)


class InventoryRequestCreate(BaseModel):
    items: list[InventoryRequestLine] = Field(min_length=1)
    notes: str | None = None


class RequestActionPayload(BaseModel):
    action: Literal["approve", "forward", "deny", "cancel"]
    approved_quantity: int | None = Field(default=None, gt=0)
    notes: str | None = None
    denial_reason: str | None = None
    prices: PriceFields | None = None


class BulkRequestActionPayload(RequestActionPayload):
    request_ids: list[UUID] = Field(min_length=1)


class InventoryRequestResponse(BaseModel):
    id: str
    requester_id: str
    approver_id: str
    variant_id: str
    requested_quantity: int
    fulfilled_quantity: int | None = None
    request_level: str
    status: str
    parent_request_id: str | None = None
    batch_id: str | None = None
    requester_notes: str | None = None
    approver_notes: str | None = None
    denial_reason: str | None = None
    responded_by: str | None = None
    requested_at: datetime
    responded_at: datetime | None = None
    approver_available: int | None = None


class InventoryRequestCreateResponse(BaseModel):
    batch_id: str
    rows: list[InventoryRequestResponse]


class RequestDecisionResponse(BaseModel):
    request: InventoryRequestResponse
    cascaded: list[InventoryRequestResponse]


class RequestDecisionResultResponse(BaseModel):
    request_id: str
    ok: bool
    request: InventoryRequestResponse | None = None
    cascaded: list[InventoryRequestResponse] = []
    error: dict | None = None


class BulkRequestDecisionResponse(BaseModel):
    action: str
    succeeded: int
    failed: int
    results: list[RequestDecisionResultResponse]


class InventoryRequestGroup(BaseModel):
    requester_id: str
    batch_id: str | None = None
    requested_at: datetime
    rows: list[InventoryRequestResponse]


class InventoryRequestListResponse(BaseModel):
    groups: list[InventoryRequestGroup]
