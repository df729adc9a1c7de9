from __future__ import annotations

import logging
from contextlib import contextmanager

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from app.custody.core.error_catalog import AppError, ErrorCatalog
from app.custody.core.logging import log_event
from app.custody.core.metrics import metrics

logger = logging.getLogger(__name__)


@contextmanager
def ledger_transaction(db, operation: str):
    """Run one logical ledger unit: commit on success, roll back on any error.

    Version conflicts and unique-key races surface as ``CONCURRENT_MODIFICATION``.
    """
    try:
        yield
        db.flush()
        db.commit()
    except AppError as exc:
        db.rollback()
        metrics.record_ledger_operation(operation, "rejected")
        log_event(logger, "ledger_operation_rejected", operation=operation, code=exc.error.code)
        raise
    except (StaleDataError, IntegrityError) as exc:
        db.rollback()
        metrics.record_ledger_operation(operation, "conflict")
        log_event(logger, "ledger_operation_conflict", operation=operation, error_class=exc.__class__.__name__)
        raise AppError(
            ErrorCatalog.CONCURRENT_MODIFICATION,
            details={"operation": operation, "type": exc.__class__.__name__},
        ) from exc
    except Exception:
        db.rollback()
        metrics.record_ledger_operation(operation, "error")
        raise
    metrics.record_ledger_operation(operation, "success")
