from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select

from app.custody.db.models import RemittanceRecord


@dataclass(frozen=True)
class RemittanceQueryFilters:
    agent_id: str | None = None
    leader_id: str | None = None
    from_date: datetime | None = None
    to_date: datetime | None = None


class RemittanceRepository:
    def __init__(self, db):
        self.db = db

    def get_record(self, record_id) -> RemittanceRecord | None:
        return self.db.get(RemittanceRecord, record_id)

    def last_for_agent(self, agent_id) -> RemittanceRecord | None:
        return (
            self.db.execute(
                select(RemittanceRecord)
                .where(RemittanceRecord.agent_id == agent_id)
                .order_by(RemittanceRecord.remittance_date.desc())
                .limit(1)
            )
            .scalars()
            .first()
        )

    def list_records(self, filters: RemittanceQueryFilters, *, limit: int) -> list[RemittanceRecord]:
        query = select(RemittanceRecord)
        if filters.agent_id:
            query = query.where(RemittanceRecord.agent_id == filters.agent_id)
        if filters.leader_id:
            query = query.where(RemittanceRecord.leader_id == filters.leader_id)
        if filters.from_date:
            query = query.where(RemittanceRecord.remittance_date >= filters.from_date)
        if filters.to_date:
            query = query.where(RemittanceRecord.remittance_date <= filters.to_date)
        query = query.order_by(RemittanceRecord.remittance_date.desc()).limit(limit)
        return self.db.execute(query).scalars().all()

    def create(self, record: RemittanceRecord) -> RemittanceRecord:
        self.db.add(record)
        self.db.flush()
        return record
