from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request

from app.custody.core.deps import require_active_custodian, require_tier
from app.custody.core.tiers import CustodianTier
from app.custody.db.models import InventoryRequest
from app.custody.db.session import get_db
from app.custody.schemas.errors import LEDGER_ERROR_RESPONSES
from app.custody.schemas.requests import (
    BulkRequestActionPayload,
    BulkRequestDecisionResponse,
    InventoryRequestCreate,
    InventoryRequestCreateResponse,
    InventoryRequestGroup,
    InventoryRequestListResponse,
    InventoryRequestResponse,
    RequestActionPayload,
    RequestDecisionResponse,
    RequestDecisionResultResponse,
)
from app.custody.services.audit import AuditService
from app.custody.services.idempotency import begin_idempotent
from app.custody.services.inventory_requests import (
    InventoryRequestService,
    RequestDecision,
    RequestLine,
    group_request_batches,
)


router = APIRouter()


def _str_or_none(value) -> str | None:
    return str(value) if value is not None else None


def _request_response(row: InventoryRequest, approver_available: int | None = None) -> InventoryRequestResponse:
    return InventoryRequestResponse(
        id=str(row.id),
        requester_id=str(row.requester_id),
        approver_id=str(row.approver_id),
        variant_id=str(row.variant_id),
        requested_quantity=row.requested_quantity,
        fulfilled_quantity=row.fulfilled_quantity,
        request_level=row.request_level,
        status=row.status,
        parent_request_id=_str_or_none(row.parent_request_id),
        batch_id=_str_or_none(row.batch_id),
        requester_notes=row.requester_notes,
        approver_notes=row.approver_notes,
        denial_reason=row.denial_reason,
        responded_by=_str_or_none(row.responded_by),
        requested_at=row.requested_at,
        responded_at=row.responded_at,
        approver_available=approver_available,
    )


def _grouped_response(pairs) -> InventoryRequestListResponse:
    available = {str(row.id): snapshot.available for row, snapshot in pairs}
    groups = []
    for group in group_request_batches([row for row, _ in pairs]):
        first = group[0]
        groups.append(
            InventoryRequestGroup(
                requester_id=str(first.requester_id),
                batch_id=_str_or_none(first.batch_id),
                requested_at=first.requested_at,
                rows=[_request_response(row, available.get(str(row.id))) for row in group],
            )
        )
    return InventoryRequestListResponse(groups=groups)


def _decision(payload: RequestActionPayload) -> RequestDecision:
    return RequestDecision(
        action=payload.action,
        approved_quantity=payload.approved_quantity,
        notes=payload.notes,
        denial_reason=payload.denial_reason,
        prices=payload.prices.supplied() if payload.prices else None,
    )


def _audit_decision(db, request: Request, actor, row_id: str, action: str, after: dict) -> None:
    AuditService(db).record_action(
        request,
        actor,
        f"inventory_request.{action}",
        entity_type="inventory_request",
        entity_id=row_id,
        after=after,
    )


@router.post(
    "/custody/requests",
    response_model=InventoryRequestCreateResponse,
    status_code=201,
    responses=LEDGER_ERROR_RESPONSES,
)
def create_requests(
    request: Request,
    payload: InventoryRequestCreate,
    current=Depends(require_tier(CustodianTier.LEADER.value, CustodianTier.AGENT.value)),
    db=Depends(get_db),
):
    context, replay = begin_idempotent(
        request, db, custodian_id=str(current.id), payload=payload.model_dump(mode="json")
    )
    if replay:
        return replay.as_response()

    rows = InventoryRequestService(db).create_requests(
        current,
        [RequestLine(variant_id=str(item.variant_id), quantity=item.quantity) for item in payload.items],
        payload.notes,
    )
    response = InventoryRequestCreateResponse(
        batch_id=str(rows[0].batch_id),
        rows=[_request_response(row) for row in rows],
    )
    context.record_success(status_code=201, response_body=response.model_dump(mode="json"))
    return response


@router.get("/custody/requests/incoming", response_model=InventoryRequestListResponse)
def list_incoming_requests(
    status: str | None = Query(default="pending"),
    current=Depends(require_tier(CustodianTier.ADMIN.value, CustodianTier.LEADER.value)),
    db=Depends(get_db),
):
    return _grouped_response(InventoryRequestService(db).list_incoming(current, status=status))


@router.get("/custody/requests/mine", response_model=InventoryRequestListResponse)
def list_my_requests(
    status: str | None = Query(default=None),
    current=Depends(require_active_custodian),
    db=Depends(get_db),
):
    return _grouped_response(InventoryRequestService(db).list_mine(current, status=status))


@router.post(
    "/custody/requests/actions",
    response_model=BulkRequestDecisionResponse,
    responses=LEDGER_ERROR_RESPONSES,
)
def bulk_request_actions(
    request: Request,
    payload: BulkRequestActionPayload,
    current=Depends(require_active_custodian),
    db=Depends(get_db),
):
    context, replay = begin_idempotent(
        request, db, custodian_id=str(current.id), payload=payload.model_dump(mode="json")
    )
    if replay:
        return replay.as_response()

    results = InventoryRequestService(db).decide_many(current, payload.request_ids, _decision(payload))
    succeeded = sum(1 for result in results if result.ok)
    response = BulkRequestDecisionResponse(
        action=payload.action,
        succeeded=succeeded,
        failed=len(results) - succeeded,
        results=[
            RequestDecisionResultResponse(
                request_id=result.request_id,
                ok=result.ok,
                request=_request_response(result.request) if result.request is not None else None,
                cascaded=[_request_response(row) for row in result.cascaded or []],
                error=result.error,
            )
            for result in results
        ],
    )
    context.record_success(status_code=200, response_body=response.model_dump(mode="json"))
    for item in response.results:
        if item.ok:
            _audit_decision(db, request, current, item.request_id, payload.action, item.model_dump(mode="json"))
    return response


@router.post(
    "/custody/requests/{request_id}/actions",
    response_model=RequestDecisionResponse,
    responses=LEDGER_ERROR_RESPONSES,
)
def request_action(
    request_id: UUID,
    request: Request,
    payload: RequestActionPayload,
    current=Depends(require_active_custodian),
    db=Depends(get_db),
):
    context, replay = begin_idempotent(
        request, db, custodian_id=str(current.id), payload=payload.model_dump(mode="json")
    )
    if replay:
        return replay.as_response()

    row, cascaded = InventoryRequestService(db).decide(current, request_id, _decision(payload))
    response = RequestDecisionResponse(
        request=_request_response(row),
        cascaded=[_request_response(item) for item in cascaded],
    )
    context.record_success(status_code=200, response_body=response.model_dump(mode="json"))
    _audit_decision(db, request, current, str(row.id), payload.action, response.model_dump(mode="json"))
    return response
