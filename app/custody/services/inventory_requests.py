from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from app.custody.core.config import settings
from app.custody.core.error_catalog import AppError, ErrorCatalog
from app.custody.core.logging import log_event
from app.custody.core.tiers import AGENT_TO_LEADER, CustodianTier, LEADER_TO_ADMIN, normalize_tier, rule_for
from app.custody.db.models import Custodian, InventoryRequest, Variant
from app.custody.repos.custodians import CustodianRepository
from app.custody.repos.inventory_requests import InventoryRequestRepository, RequestQueryFilters
from app.custody.services.allocation import AllocationService
from app.custody.services.availability import AvailabilityService
from app.custody.services.notifications import change_bus
from app.custody.services.transactions import ledger_transaction

logger = logging.getLogger(__name__)

REQUEST_ACTIONS = ("approve", "forward", "deny", "cancel")


@dataclass(frozen=True)
class RequestLine:
    variant_id: str
    quantity: int


@dataclass(frozen=True)
class RequestDecision:
    action: str
    approved_quantity: int | None = None
    notes: str | None = None
    denial_reason: str | None = None
    prices: dict | None = None


@dataclass
class RequestDecisionResult:
    request_id: str
    ok: bool
    request: InventoryRequest | None = None
    cascaded: list[InventoryRequest] | None = None
    error: dict | None = None


def group_request_batches(rows: list[InventoryRequest], *, window_ms: int | None = None) -> list[list[InventoryRequest]]:
    """Group rows submitted together by one requester.

    Rows carrying a batch id group on it; older rows without one group when their
    timestamps fall within the batch window of the group's first row.
    """
    window = timedelta(milliseconds=settings.REQUEST_BATCH_WINDOW_MS if window_ms is None else window_ms)
    groups: list[list[InventoryRequest]] = []
    by_batch: dict[tuple[str, str], list[InventoryRequest]] = {}
    loose: dict[str, list[list[InventoryRequest]]] = {}
    for row in sorted(rows, key=lambda item: (str(item.requester_id), item.requested_at)):
        requester = str(row.requester_id)
        if row.batch_id is not None:
            key = (requester, str(row.batch_id))
            group = by_batch.get(key)
            if group is None:
                group = by_batch[key] = []
                groups.append(group)
            group.append(row)
            continue
        candidates = loose.setdefault(requester, [])
        if candidates and abs(row.requested_at - candidates[-1][0].requested_at) <= window:
            candidates[-1].append(row)
        else:
            group = [row]
            candidates.append(group)
            groups.append(group)
    groups.sort(key=lambda group: group[0].requested_at, reverse=True)
    return groups


class InventoryRequestService:
    def __init__(self, db, *, bus=None):
        self.db = db
        self.bus = bus or change_bus
        self.repo = InventoryRequestRepository(db)
        self.custodians = CustodianRepository(db)
        self.allocations = AllocationService(db, bus=self.bus)
        self.availability = AvailabilityService(db)

    def create_requests(self, requester: Custodian, lines: list[RequestLine], notes: str | None = None) -> list[InventoryRequest]:
        level = rule_for(requester.tier).request_level
        if level is None:
            raise AppError(ErrorCatalog.PERMISSION_DENIED, details={"message": "tier cannot request stock"})
        if requester.parent_id is None:
            raise AppError(ErrorCatalog.VALIDATION_ERROR, details={"message": "requester has no parent custodian"})
        if not lines:
            raise AppError(ErrorCatalog.VALIDATION_ERROR, details={"message": "items must not be empty"})
        seen = set()
        for line in lines:
            if line.quantity <= 0:
                raise AppError(
                    ErrorCatalog.VALIDATION_ERROR,
                    details={"message": "quantity must be positive", "variant_id": str(line.variant_id)},
                )
            if str(line.variant_id) in seen:
                raise AppError(
                    ErrorCatalog.VALIDATION_ERROR,
                    details={"message": "duplicate variant in request", "variant_id": str(line.variant_id)},
                )
            seen.add(str(line.variant_id))

        now = datetime.utcnow()
        batch_id = uuid.uuid4()
        created = []
        with ledger_transaction(self.db, "request.create"):
            for line in lines:
                if self.db.get(Variant, line.variant_id) is None:
                    raise AppError(ErrorCatalog.NOT_FOUND, details={"variant_id": str(line.variant_id)})
                row = InventoryRequest(
                    requester_id=requester.id,
                    approver_id=requester.parent_id,
                    variant_id=line.variant_id,
                    requested_quantity=line.quantity,
                    request_level=level,
                    status="pending",
                    batch_id=batch_id,
                    requester_notes=notes,
                    requested_at=now,
                )
                self.db.add(row)
                created.append(row)
        self.bus.publish("requests", requester.parent_id)
        log_event(
            logger,
            "requests_created",
            requester_id=str(requester.id),
            batch_id=str(batch_id),
            count=len(created),
        )
        return created

    def decide(self, actor: Custodian, request_id, decision: RequestDecision) -> tuple[InventoryRequest, list[InventoryRequest]]:
        if decision.action not in REQUEST_ACTIONS:
            raise AppError(ErrorCatalog.VALIDATION_ERROR, details={"message": "unknown action", "action": decision.action})
        with ledger_transaction(self.db, f"request.{decision.action}"):
            request = self.repo.get_request(request_id, for_update=True)
            if request is None:
                raise AppError(ErrorCatalog.NOT_FOUND, details={"request_id": str(request_id)})
            if decision.action == "cancel":
                cascaded = self._cancel(actor, request)
            else:
                self._require_reviewer(actor, request)
                if decision.action == "approve":
                    cascaded = self._approve(actor, request, decision)
                elif decision.action == "forward":
                    cascaded = self._forward(actor, request, decision)
                else:
                    cascaded = self._deny(actor, request, decision)
        self.bus.publish("requests", request.id)
        if decision.action == "approve":
            self.bus.publish("ledger", request.requester_id)
        log_event(
            logger,
            "request_decided",
            request_id=str(request.id),
            action=decision.action,
            actor_id=str(actor.id),
            status=request.status,
            cascaded=[str(row.id) for row in cascaded],
        )
        return request, cascaded

    def decide_many(self, actor: Custodian, request_ids: list, decision: RequestDecision) -> list[RequestDecisionResult]:
        if not request_ids:
            raise AppError(ErrorCatalog.VALIDATION_ERROR, details={"message": "request_ids must not be empty"})
        results = []
        for request_id in request_ids:
            try:
                request, cascaded = self.decide(actor, request_id, decision)
            except AppError as exc:
                results.append(RequestDecisionResult(request_id=str(request_id), ok=False, error=exc.as_payload()))
                continue
            results.append(RequestDecisionResult(request_id=str(request_id), ok=True, request=request, cascaded=cascaded))
        return results

    def list_incoming(self, actor: Custodian, *, status: str | None = "pending", limit: int | None = None):
        rows = self.repo.list_requests(
            RequestQueryFilters(approver_id=actor.id, status=status),
            limit=limit or settings.LIST_MAX_PAGE_SIZE,
        )
        return self._with_availability(rows)

    def list_mine(self, actor: Custodian, *, status: str | None = None, limit: int | None = None):
        rows = self.repo.list_requests(
            RequestQueryFilters(requester_id=actor.id, status=status),
            limit=limit or settings.LIST_MAX_PAGE_SIZE,
        )
        return self._with_availability(rows)

    def _with_availability(self, rows):
        cache = {}
        result = []
        for row in rows:
            key = (str(row.approver_id), str(row.variant_id))
            if key not in cache:
                cache[key] = self.availability.snapshot(row.approver_id, row.variant_id)
            result.append((row, cache[key]))
        return result

    def _require_reviewer(self, actor: Custodian, request: InventoryRequest) -> None:
        if str(request.approver_id) != str(actor.id):
            raise AppError(ErrorCatalog.PERMISSION_DENIED, details={"request_id": str(request.id)})
        self._require_pending(request)
        if self.repo.pending_child(request.id) is not None:
            raise AppError(
                ErrorCatalog.INVALID_TRANSITION,
                details={"request_id": str(request.id), "message": "request is awaiting its forwarded copy"},
            )

    @staticmethod
    def _require_pending(request: InventoryRequest) -> None:
        if request.status != "pending":
            raise AppError(
                ErrorCatalog.INVALID_TRANSITION,
                details={"request_id": str(request.id), "status": request.status},
            )

    @staticmethod
    def _resolve(request: InventoryRequest, actor: Custodian, status: str, now: datetime, notes: str | None) -> None:
        request.status = status
        request.responded_by = actor.id
        request.responded_at = now
        request.updated_at = now
        if notes is not None:
            request.approver_notes = notes

    def _approve(self, actor: Custodian, request: InventoryRequest, decision: RequestDecision) -> list[InventoryRequest]:
        quantity = decision.approved_quantity or request.requested_quantity
        if quantity < 1 or quantity > request.requested_quantity:
            raise AppError(
                ErrorCatalog.VALIDATION_ERROR,
                details={
                    "message": "approved_quantity must be between 1 and requested_quantity",
                    "approved_quantity": quantity,
                    "requested_quantity": request.requested_quantity,
                },
            )
        now = datetime.utcnow()
        requester = self.custodians.get(request.requester_id)
        self.allocations.transfer(
            performed_by=actor.id,
            parent=actor,
            child=requester,
            variant_id=request.variant_id,
            quantity=quantity,
            prices=decision.prices or {},
            reference_type="inventory_request",
            reference_id=request.id,
            now=now,
        )
        request.fulfilled_quantity = quantity
        self._resolve(request, actor, "approved", now, decision.notes)

        if request.parent_request_id is None:
            return []
        original = self.repo.get_request(request.parent_request_id, for_update=True)
        if original is None:
            raise AppError(ErrorCatalog.NOT_FOUND, details={"request_id": str(request.parent_request_id)})
        self._require_pending(original)
        agent = self.custodians.get(original.requester_id)
        # Second leg: the stock the leader just received flows on to the agent who asked.
        self.allocations.transfer(
            performed_by=actor.id,
            parent=requester,
            child=agent,
            variant_id=original.variant_id,
            quantity=quantity,
            prices={},
            reference_type="inventory_request",
            reference_id=original.id,
            now=now,
        )
        original.fulfilled_quantity = quantity
        self._resolve(original, actor, "approved", now, decision.notes)
        return [original]

    def _forward(self, actor: Custodian, request: InventoryRequest, decision: RequestDecision) -> list[InventoryRequest]:
        if normalize_tier(actor.tier) != CustodianTier.LEADER or request.request_level != AGENT_TO_LEADER:
            raise AppError(
                ErrorCatalog.INVALID_TRANSITION,
                details={"request_id": str(request.id), "message": "only leaders forward agent requests"},
            )
        if actor.parent_id is None:
            raise AppError(ErrorCatalog.VALIDATION_ERROR, details={"message": "leader has no parent custodian"})
        now = datetime.utcnow()
        forwarded = InventoryRequest(
            requester_id=actor.id,
            approver_id=actor.parent_id,
            variant_id=request.variant_id,
            requested_quantity=request.requested_quantity,
            request_level=LEADER_TO_ADMIN,
            status="pending",
            parent_request_id=request.id,
            requester_notes=decision.notes or request.requester_notes,
            requested_at=now,
        )
        self.db.add(forwarded)
        request.updated_at = now
        if decision.notes is not None:
            request.approver_notes = decision.notes
        return [forwarded]

    def _deny(self, actor: Custodian, request: InventoryRequest, decision: RequestDecision) -> list[InventoryRequest]:
        reason = (decision.denial_reason or "").strip()
        if not reason:
            raise AppError(ErrorCatalog.VALIDATION_ERROR, details={"message": "denial_reason is required"})
        now = datetime.utcnow()
        request.denial_reason = reason
        self._resolve(request, actor, "denied", now, decision.notes)
        if request.parent_request_id is None:
            return []
        original = self.repo.get_request(request.parent_request_id, for_update=True)
        if original is None or original.status != "pending":
            return []
        original.denial_reason = reason
        self._resolve(original, actor, "denied", now, decision.notes)
        return [original]

    def _cancel(self, actor: Custodian, request: InventoryRequest) -> list[InventoryRequest]:
        if str(request.requester_id) != str(actor.id):
            raise AppError(ErrorCatalog.PERMISSION_DENIED, details={"request_id": str(request.id)})
        self._require_pending(request)
        now = datetime.utcnow()
        request.status = "cancelled"
        request.responded_at = now
        request.updated_at = now
        child = self.repo.pending_child(request.id)
        if child is None:
            return []
        child.status = "cancelled"
        child.responded_at = now
        child.updated_at = now
        return [child]
