from sqlalchemy import select

from app.custody.core.config import settings
from app.custody.core.tiers import CustodianTier
from app.custody.db.models import Custodian


def _get_or_create_admin(db):
    admin = (
        db.execute(
            select(Custodian).where(
                Custodian.tier == CustodianTier.ADMIN.value,
                Custodian.name == settings.DEFAULT_ADMIN_NAME,
            )
        )
        .scalars()
        .first()
    )
    if admin:
        return admin
    admin = Custodian(name=settings.DEFAULT_ADMIN_NAME, tier=CustodianTier.ADMIN.value, parent_id=None)
    db.add(admin)
    db.flush()
    return admin


def run_seed(db):
    admin = _get_or_create_admin(db)
    db.commit()
    return admin
