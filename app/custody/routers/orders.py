from __future__ import annotations

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request

from app.custody.core.config import settings
from app.custody.core.deps import require_active_custodian, require_tier
from app.custody.core.tiers import CustodianTier
from app.custody.db.models import ClientOrder
from app.custody.db.session import get_db
from app.custody.repos.orders import OrderQueryFilters, OrderRepository
from app.custody.schemas.errors import LEDGER_ERROR_RESPONSES
from app.custody.schemas.orders import (
    OrderActionRequest,
    OrderCreateRequest,
    OrderItemResponse,
    OrderListResponse,
    OrderResponse,
)
from app.custody.services.audit import AuditService
from app.custody.services.idempotency import begin_idempotent
from app.custody.services.orders import OrderLine, OrderService


router = APIRouter()


def _order_response(repo: OrderRepository, order: ClientOrder) -> OrderResponse:
    return OrderResponse(
        id=str(order.id),
        order_number=order.order_number,
        agent_id=str(order.agent_id),
        client_ref=order.client_ref,
        status=order.status,
        stage=order.stage,
        remitted=order.remitted,
        subtotal=order.subtotal,
        discount=order.discount,
        tax_rate=order.tax_rate,
        tax_amount=order.tax_amount,
        total_amount=order.total_amount,
        payment_method=order.payment_method,
        notes=order.notes,
        rejection_reason=order.rejection_reason,
        remittance_id=str(order.remittance_id) if order.remittance_id else None,
        remitted_at=order.remitted_at,
        created_at=order.created_at,
        items=[
            OrderItemResponse(
                id=str(item.id),
                variant_id=str(item.variant_id),
                quantity=item.quantity,
                unit_price=item.unit_price,
                total_price=item.total_price,
            )
            for item in repo.get_items(order.id)
        ],
    )


@router.post("/custody/orders", response_model=OrderResponse, status_code=201, responses=LEDGER_ERROR_RESPONSES)
def place_order(
    request: Request,
    payload: OrderCreateRequest,
    current=Depends(require_tier(CustodianTier.AGENT.value)),
    db=Depends(get_db),
):
    context, replay = begin_idempotent(
        request, db, custodian_id=str(current.id), payload=payload.model_dump(mode="json")
    )
    if replay:
        return replay.as_response()

    order = OrderService(db).place_order(
        current,
        [
            OrderLine(variant_id=str(item.variant_id), quantity=item.quantity, unit_price=item.unit_price)
            for item in payload.items
        ],
        client_ref=payload.client_ref,
        discount=payload.discount,
        tax_rate=payload.tax_rate,
        payment_method=payload.payment_method,
        notes=payload.notes,
    )
    response = _order_response(OrderRepository(db), order)
    context.record_success(status_code=201, response_body=response.model_dump(mode="json"))
    AuditService(db).record_action(
        request,
        current,
        "client_order.place",
        entity_type="client_order",
        entity_id=response.id,
        after=response.model_dump(mode="json"),
    )
    return response


@router.get("/custody/orders", response_model=OrderListResponse)
def list_orders(
    agent_id: UUID | None = Query(default=None),
    status: str | None = Query(default=None),
    stage: str | None = Query(default=None),
    remitted: bool | None = Query(default=None),
    from_date: datetime | None = Query(default=None),
    to_date: datetime | None = Query(default=None),
    limit: int = Query(default=50, ge=1),
    offset: int = Query(default=0, ge=0),
    current=Depends(require_active_custodian),
    db=Depends(get_db),
):
    repo = OrderRepository(db)
    rows = OrderService(db).list_orders(
        current,
        OrderQueryFilters(
            agent_ids=[agent_id] if agent_id else None,
            status=status,
            stage=stage,
            remitted=remitted,
            from_date=from_date,
            to_date=to_date,
        ),
        limit=min(limit, settings.LIST_MAX_PAGE_SIZE),
        offset=offset,
    )
    return OrderListResponse(rows=[_order_response(repo, row) for row in rows])


@router.post(
    "/custody/orders/{order_id}/actions",
    response_model=OrderResponse,
    responses=LEDGER_ERROR_RESPONSES,
)
def order_action(
    order_id: UUID,
    request: Request,
    payload: OrderActionRequest,
    current=Depends(require_tier(CustodianTier.ADMIN.value, CustodianTier.LEADER.value)),
    db=Depends(get_db),
):
    context, replay = begin_idempotent(
        request, db, custodian_id=str(current.id), payload=payload.model_dump(mode="json")
    )
    if replay:
        return replay.as_response()

    order = OrderService(db).decide_order(current, order_id, payload.action, reason=payload.reason)
    response = _order_response(OrderRepository(db), order)
    context.record_success(status_code=200, response_body=response.model_dump(mode="json"))
    AuditService(db).record_action(
        request,
        current,
        f"client_order.{payload.action}",
        entity_type="client_order",
        entity_id=response.id,
        after=response.model_dump(mode="json"),
    )
    return response
