from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request

from app.custody.core.config import settings
from app.custody.core.deps import require_active_custodian, require_tier
from app.custody.core.error_catalog import AppError, ErrorCatalog
from app.custody.core.tiers import CustodianTier, normalize_tier
from app.custody.db.models import LedgerEntry, StockMovement
from app.custody.db.session import get_db
from app.custody.repos.custodians import CustodianRepository
from app.custody.repos.movements import MovementQueryFilters, StockMovementRepository
from app.custody.schemas.allocations import AllocationBatchResponse, AllocationItemResult, AllocationRequest
from app.custody.schemas.errors import LEDGER_ERROR_RESPONSES
from app.custody.schemas.ledger import (
    AvailabilityResponse,
    LedgerEntryResponse,
    LedgerListResponse,
    LedgerRowResponse,
    ReceiptRequest,
    StockMovementListResponse,
    StockMovementResponse,
)
from app.custody.services.allocation import AllocationItem, AllocationService
from app.custody.services.audit import AuditService
from app.custody.services.availability import AvailabilityService
from app.custody.services.idempotency import begin_idempotent


router = APIRouter()


def _str_or_none(value) -> str | None:
    return str(value) if value is not None else None


def entry_response(entry: LedgerEntry) -> LedgerEntryResponse:
    return LedgerEntryResponse(
        id=str(entry.id),
        ledger=entry.ledger,
        custodian_id=str(entry.custodian_id),
        variant_id=str(entry.variant_id),
        quantity=entry.quantity,
        unit_price=entry.unit_price,
        selling_price=entry.selling_price,
        dealer_price=entry.dealer_price,
        retail_price=entry.retail_price,
        version=entry.version,
        updated_at=entry.updated_at,
    )


def _movement_response(movement: StockMovement) -> StockMovementResponse:
    return StockMovementResponse(
        id=str(movement.id),
        movement_type=movement.movement_type,
        variant_id=str(movement.variant_id),
        quantity=movement.quantity,
        from_custodian_id=_str_or_none(movement.from_custodian_id),
        to_custodian_id=_str_or_none(movement.to_custodian_id),
        reference_type=movement.reference_type,
        reference_id=_str_or_none(movement.reference_id),
        unit_price=movement.unit_price,
        selling_price=movement.selling_price,
        dealer_price=movement.dealer_price,
        retail_price=movement.retail_price,
        performed_by=str(movement.performed_by),
        notes=movement.notes,
        created_at=movement.created_at,
    )


def require_visible_custodian(db, viewer, custodian_id):
    """A custodian sees itself and everyone below it."""
    repo = CustodianRepository(db)
    target = repo.get(custodian_id)
    if target is None:
        raise AppError(ErrorCatalog.NOT_FOUND, details={"custodian_id": str(custodian_id)})
    if str(target.id) == str(viewer.id):
        return target
    if any(str(row.id) == str(target.id) for row in repo.descendants(viewer.id)):
        return target
    raise AppError(ErrorCatalog.PERMISSION_DENIED, details={"custodian_id": str(custodian_id)})


@router.get(
    "/custody/availability/{custodian_id}/{variant_id}",
    response_model=AvailabilityResponse,
    responses=LEDGER_ERROR_RESPONSES,
)
def get_availability(
    custodian_id: UUID,
    variant_id: UUID,
    current=Depends(require_active_custodian),
    db=Depends(get_db),
):
    require_visible_custodian(db, current, custodian_id)
    snapshot = AvailabilityService(db).snapshot(custodian_id, variant_id)
    return AvailabilityResponse(**snapshot.as_dict())


@router.get("/custody/ledger/{custodian_id}", response_model=LedgerListResponse, responses=LEDGER_ERROR_RESPONSES)
def get_ledger(
    custodian_id: UUID,
    positive_only: bool = Query(default=False),
    current=Depends(require_active_custodian),
    db=Depends(get_db),
):
    target = require_visible_custodian(db, current, custodian_id)
    rows = []
    for entry, snapshot in AvailabilityService(db).ledger_snapshots(target.id):
        if positive_only and entry.quantity <= 0:
            continue
        rows.append(
            LedgerRowResponse(
                **entry_response(entry).model_dump(),
                allocated_below=snapshot.allocated_below,
                reserved=snapshot.reserved,
                available=snapshot.available,
            )
        )
    return LedgerListResponse(custodian_id=str(target.id), tier=target.tier, rows=rows)


@router.post(
    "/custody/receipts",
    response_model=LedgerEntryResponse,
    status_code=201,
    responses=LEDGER_ERROR_RESPONSES,
)
def receive_stock(
    request: Request,
    payload: ReceiptRequest,
    current=Depends(require_tier(CustodianTier.ADMIN.value)),
    db=Depends(get_db),
):
    context, replay = begin_idempotent(
        request, db, custodian_id=str(current.id), payload=payload.model_dump(mode="json")
    )
    if replay:
        return replay.as_response()

    entry = AllocationService(db).receive(current, payload.variant_id, payload.quantity, payload.supplied())
    response = entry_response(entry)
    context.record_success(status_code=201, response_body=response.model_dump(mode="json"))
    AuditService(db).record_action(
        request,
        current,
        "stock.receive",
        entity_type="ledger_entry",
        entity_id=response.id,
        after=response.model_dump(mode="json"),
        metadata={"quantity": payload.quantity},
    )
    return response


@router.post(
    "/custody/allocations",
    response_model=AllocationBatchResponse,
    responses=LEDGER_ERROR_RESPONSES,
)
def allocate_stock(
    request: Request,
    payload: AllocationRequest,
    current=Depends(require_tier(CustodianTier.ADMIN.value, CustodianTier.LEADER.value)),
    db=Depends(get_db),
):
    context, replay = begin_idempotent(
        request, db, custodian_id=str(current.id), payload=payload.model_dump(mode="json")
    )
    if replay:
        return replay.as_response()

    items = [
        AllocationItem(
            variant_id=str(line.variant_id),
            quantity=line.quantity,
            prices=line.supplied(),
        )
        for line in payload.items
    ]
    results = AllocationService(db).allocate_batch(current, payload.child_id, items)
    allocated = [result for result in results if result.allocated]
    response = AllocationBatchResponse(
        parent_id=str(current.id),
        child_id=str(payload.child_id),
        allocated_count=len(allocated),
        failed_count=len(results) - len(allocated),
        results=[
            AllocationItemResult(
                variant_id=result.variant_id,
                quantity=result.quantity,
                allocated=result.allocated,
                entry=entry_response(result.entry) if result.entry is not None else None,
                available_after=result.available_after,
                error=result.error,
            )
            for result in results
        ],
    )
    context.record_success(status_code=200, response_body=response.model_dump(mode="json"))
    if len(results) > 1:
        AuditService(db).record_action(
            request,
            current,
            "allocation.batch",
            entity_type="custodian",
            entity_id=str(payload.child_id),
            after=response.model_dump(mode="json"),
            metadata={"allocated": len(allocated), "failed": len(results) - len(allocated)},
        )
    return response


@router.get("/custody/movements", response_model=StockMovementListResponse, responses=LEDGER_ERROR_RESPONSES)
def list_movements(
    custodian_id: UUID | None = Query(default=None),
    variant_id: UUID | None = Query(default=None),
    movement_type: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1),
    current=Depends(require_active_custodian),
    db=Depends(get_db),
):
    if custodian_id is not None:
        require_visible_custodian(db, current, custodian_id)
    elif normalize_tier(current.tier) != CustodianTier.ADMIN:
        custodian_id = current.id
    rows = StockMovementRepository(db).list_movements(
        MovementQueryFilters(
            custodian_id=custodian_id,
            variant_id=variant_id,
            movement_type=movement_type,
        ),
        limit=min(limit, settings.LIST_MAX_PAGE_SIZE),
    )
    return StockMovementListResponse(rows=[_movement_response(row) for row in rows])
