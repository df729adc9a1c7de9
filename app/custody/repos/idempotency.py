from sqlalchemy import select

from app.custody.db.models import IdempotencyRecord


class IdempotencyRepository:
    def __init__(self, db):
        self.db = db

    def get_by_key(self, *, custodian_id: str, endpoint: str, method: str, idempotency_key: str):
        stmt = select(IdempotencyRecord).where(
            IdempotencyRecord.custodian_id == custodian_id,
            IdempotencyRecord.endpoint == endpoint,
            IdempotencyRecord.method == method,
            IdempotencyRecord.idempotency_key == idempotency_key,
        )
        return self.db.execute(stmt).scalars().first()

    def create(self, record: IdempotencyRecord) -> IdempotencyRecord:
        self.db.add(record)
        self.db.commit()
        self.db.refresh(record)
        return record

    def update(self, record: IdempotencyRecord, **fields) -> IdempotencyRecord:
        # Re-attach first: after a rolled back mutation the record can arrive detached.
        self.db.add(record)
        for name, value in fields.items():
            setattr(record, name, value)
        self.db.commit()
        self.db.refresh(record)
        return record
