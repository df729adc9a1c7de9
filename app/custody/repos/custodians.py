from __future__ import annotations

from sqlalchemy import select

from app.custody.core.tiers import CustodianTier
from app.custody.db.models import Custodian


class CustodianRepository:
    def __init__(self, db):
        self.db = db

    def get(self, custodian_id) -> Custodian | None:
        return self.db.get(Custodian, custodian_id)

    def children_ids(self, custodian_id) -> list:
        return list(
            self.db.execute(select(Custodian.id).where(Custodian.parent_id == custodian_id)).scalars().all()
        )

    def list_children(self, custodian_id) -> list[Custodian]:
        return (
            self.db.execute(
                select(Custodian).where(Custodian.parent_id == custodian_id).order_by(Custodian.name.asc())
            )
            .scalars()
            .all()
        )

    def descendants(self, custodian_id) -> list[Custodian]:
        """Every custodian below ``custodian_id``, walking parent links breadth-first."""
        found: list[Custodian] = []
        seen = {str(custodian_id)}
        frontier = [custodian_id]
        while frontier:
            rows = (
                self.db.execute(select(Custodian).where(Custodian.parent_id.in_(frontier))).scalars().all()
            )
            frontier = []
            for row in rows:
                key = str(row.id)
                if key in seen:
                    continue
                seen.add(key)
                found.append(row)
                frontier.append(row.id)
        return found

    def descendant_agent_ids(self, custodian_id) -> list:
        return [row.id for row in self.descendants(custodian_id) if row.tier == CustodianTier.AGENT.value]
