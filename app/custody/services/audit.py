import logging
from dataclasses import dataclass
from datetime import datetime

from app.custody.db.models import AuditEvent
from app.custody.repos.audit import AuditRepository

logger = logging.getLogger(__name__)


@dataclass
class AuditEventPayload:
    custodian_id: str | None
    trace_id: str | None
    actor: str
    action: str
    entity_type: str
    entity_id: str | None
    after: dict | None = None
    before: dict | None = None
    metadata: dict | None = None
    result: str = "success"
    actor_tier: str | None = None


class AuditService:
    """Audit trail for committed custody actions.

    Events are written after the ledger transaction has committed, so a failure here is
    logged and dropped rather than turned into an error for the caller.
    """

    def __init__(self, db):
        self.repo = AuditRepository(db)

    def record_action(
        self,
        request,
        actor,
        action: str,
        *,
        entity_type: str,
        entity_id: str | None,
        after: dict | None = None,
        metadata: dict | None = None,
    ) -> None:
        self.record_event(
            AuditEventPayload(
                custodian_id=str(actor.id),
                trace_id=getattr(request.state, "trace_id", "") or None,
                actor=actor.name,
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                after=after,
                metadata=metadata,
                actor_tier=actor.tier,
            )
        )

    def record_event(self, payload: AuditEventPayload) -> None:
        metadata = {**(payload.metadata or {}), "actor_tier": payload.actor_tier}
        event = AuditEvent(
            custodian_id=payload.custodian_id,
            trace_id=payload.trace_id,
            actor=payload.actor,
            action=payload.action,
            entity_type=payload.entity_type,
            entity_id=payload.entity_id,
            before_payload=payload.before,
            after_payload=payload.after,
            event_metadata=metadata,
            result=payload.result,
            created_at=datetime.utcnow(),
        )
        try:
            self.repo.create(event)
        except Exception:
            self.repo.db.rollback()
            logger.exception(
                "Failed to write audit event %s for %s %s",
                payload.action,
                payload.entity_type,
                payload.entity_id,
            )
