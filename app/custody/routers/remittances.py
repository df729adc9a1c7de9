from __future__ import annotations

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, File, Query, Request, UploadFile

from app.custody.core.config import settings
from app.custody.core.deps import require_active_custodian, require_tier
from app.custody.core.error_catalog import AppError, ErrorCatalog
from app.custody.core.tiers import CustodianTier
from app.custody.db.models import RemittanceRecord
from app.custody.db.session import get_db
from app.custody.repos.remittances import RemittanceQueryFilters
from app.custody.schemas.errors import LEDGER_ERROR_RESPONSES, error_responses
from app.custody.schemas.remittances import (
    RemittanceCreateRequest,
    RemittanceListResponse,
    RemittanceRecordResponse,
    RemittanceResultResponse,
)
from app.custody.schemas.signatures import SignatureUploadResponse
from app.custody.services.audit import AuditService
from app.custody.services.idempotency import begin_idempotent
from app.custody.services.remittance import RemittanceService
from app.custody.services.signatures import SignatureStorage, SignatureUploadError


router = APIRouter()


def get_signature_storage() -> SignatureStorage:
    return SignatureStorage()


def _record_response(record: RemittanceRecord) -> RemittanceRecordResponse:
    return RemittanceRecordResponse(
        id=str(record.id),
        agent_id=str(record.agent_id),
        leader_id=str(record.leader_id),
        performed_by=str(record.performed_by),
        remittance_date=record.remittance_date,
        items_remitted=record.items_remitted,
        total_units=record.total_units,
        orders_count=record.orders_count,
        total_revenue=record.total_revenue,
        order_ids=list(record.order_ids or []),
        items=list(record.items or []),
        signature_url=record.signature_url,
        signature_path=record.signature_path,
    )


@router.post(
    "/custody/signatures",
    response_model=SignatureUploadResponse,
    status_code=201,
    responses=error_responses(401, 403, 422, 502),
)
async def upload_signature(
    request: Request,
    file: UploadFile = File(...),
    current=Depends(require_tier(CustodianTier.AGENT.value)),
    storage: SignatureStorage = Depends(get_signature_storage),
):
    if current.parent_id is None:
        raise AppError(ErrorCatalog.VALIDATION_ERROR, details={"message": "agent has no leader"})
    file_bytes = await file.read()
    try:
        stored = storage.upload_signature(
            file_bytes=file_bytes,
            original_filename=file.filename,
            content_type=file.content_type,
            agent_id=str(current.id),
            leader_id=str(current.parent_id),
            trace_id=getattr(request.state, "trace_id", "") or None,
        )
    except SignatureUploadError as exc:
        error = getattr(ErrorCatalog, exc.error_code, ErrorCatalog.VALIDATION_ERROR)
        raise AppError(error, details={"message": str(exc)}) from exc
    return SignatureUploadResponse(signature_url=stored.signature_url, signature_path=stored.signature_path)


@router.post("/custody/remittances", response_model=RemittanceResultResponse, responses=LEDGER_ERROR_RESPONSES)
def remit(
    request: Request,
    payload: RemittanceCreateRequest,
    current=Depends(require_tier(CustodianTier.AGENT.value)),
    db=Depends(get_db),
):
    context, replay = begin_idempotent(
        request, db, custodian_id=str(current.id), payload=payload.model_dump(mode="json")
    )
    if replay:
        return replay.as_response()

    record = RemittanceService(db).remit(
        current,
        payload.leader_id,
        order_ids=[str(order_id) for order_id in payload.order_ids] if payload.order_ids is not None else None,
        signature_url=payload.signature_url,
        signature_path=payload.signature_path,
    )
    response = RemittanceResultResponse(
        remitted=record is not None,
        record=_record_response(record) if record is not None else None,
    )
    context.record_success(status_code=200, response_body=response.model_dump(mode="json"))
    if record is not None:
        AuditService(db).record_action(
            request,
            current,
            "remittance.create",
            entity_type="remittance",
            entity_id=str(record.id),
            after=response.model_dump(mode="json"),
            metadata={"leader_id": str(payload.leader_id)},
        )
    return response


@router.get("/custody/remittances", response_model=RemittanceListResponse)
def list_remittances(
    agent_id: UUID | None = Query(default=None),
    leader_id: UUID | None = Query(default=None),
    from_date: datetime | None = Query(default=None),
    to_date: datetime | None = Query(default=None),
    limit: int = Query(default=50, ge=1),
    current=Depends(require_active_custodian),
    db=Depends(get_db),
):
    rows = RemittanceService(db).list_records(
        current,
        RemittanceQueryFilters(agent_id=agent_id, leader_id=leader_id, from_date=from_date, to_date=to_date),
        limit=min(limit, settings.LIST_MAX_PAGE_SIZE),
    )
    return RemittanceListResponse(rows=[_record_response(row) for row in rows])
