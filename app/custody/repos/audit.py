from sqlalchemy import select

from app.custody.db.models import AuditEvent


class AuditRepository:
    def __init__(self, db):
        self.db = db

    def create(self, event: AuditEvent) -> AuditEvent:
        self.db.add(event)
        self.db.commit()
        return event

    def list_for_entity(self, entity_type: str, entity_id: str) -> list[AuditEvent]:
        return (
            self.db.execute(
                select(AuditEvent)
                .where(AuditEvent.entity_type == entity_type, AuditEvent.entity_id == entity_id)
                .order_by(AuditEvent.created_at.asc())
            )
            .scalars()
            .all()
        )
