"""Idempotency keys for ledger mutations.

A mutation is keyed by ``(custodian, endpoint, method, Idempotency-Key)``. Repeating a key
with the same payload replays the stored response; repeating it with another payload is
rejected. Failed attempts are stored as well, so a retried over-allocation keeps answering
409 instead of running a second time.
"""

import hashlib
import json
from dataclasses import dataclass
from datetime import datetime

from fastapi import Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from app.custody.core.error_catalog import AppError, ErrorCatalog
from app.custody.core.metrics import metrics
from app.custody.db.models import IdempotencyRecord
from app.custody.repos.idempotency import IdempotencyRepository


IDEMPOTENCY_HEADER = "Idempotency-Key"
IDEMPOTENCY_RESULT_HEADER = "X-Idempotency-Result"

STATE_IN_PROGRESS = "in_progress"
STATE_SUCCEEDED = "succeeded"
STATE_FAILED = "failed"


def request_fingerprint(payload: object) -> str:
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class IdempotencyReplay:
    status_code: int
    response_body: dict

    @classmethod
    def from_record(cls, record: IdempotencyRecord) -> "IdempotencyReplay":
        return cls(status_code=record.status_code, response_body=json.loads(record.response_body))

    def as_response(self) -> JSONResponse:
        return JSONResponse(
            status_code=self.status_code,
            content=self.response_body,
            headers={IDEMPOTENCY_RESULT_HEADER: ErrorCatalog.IDEMPOTENCY_REPLAY.code},
        )


class IdempotencyContext:
    """Handle on a claimed key; the outcome of the mutation is written back through it."""

    def __init__(self, record: IdempotencyRecord, repo: IdempotencyRepository):
        self._record = record
        self._repo = repo
        # The record may be expired and detached by the time an error handler runs.
        self._state = STATE_IN_PROGRESS

    @property
    def record(self) -> IdempotencyRecord:
        return self._record

    def record_success(self, *, status_code: int, response_body: dict) -> None:
        self._store(STATE_SUCCEEDED, status_code, response_body)

    def record_failure(self, *, status_code: int, response_body: dict) -> None:
        if self._state != STATE_IN_PROGRESS:
            return
        self._store(STATE_FAILED, status_code, response_body)

    def _store(self, state: str, status_code: int, response_body: dict) -> None:
        self._state = state
        self._record = self._repo.update(
            self._record,
            state=state,
            status_code=status_code,
            response_body=json.dumps(response_body, default=str),
            updated_at=datetime.utcnow(),
        )


class IdempotencyService:
    def __init__(self, db):
        self.repo = IdempotencyRepository(db)

    def start(
        self,
        *,
        custodian_id: str,
        endpoint: str,
        method: str,
        idempotency_key: str,
        request_hash: str,
    ) -> tuple[IdempotencyContext | None, IdempotencyReplay | None]:
        key = dict(custodian_id=custodian_id, endpoint=endpoint, method=method, idempotency_key=idempotency_key)
        existing = self.repo.get_by_key(**key)
        if existing is None:
            claimed = self._claim(key, request_hash)
            if claimed is not None:
                return IdempotencyContext(claimed, self.repo), None
            # Another request claimed the key between the lookup and the insert.
            existing = self.repo.get_by_key(**key)
        return None, self._replay(existing, request_hash)

    def _claim(self, key: dict, request_hash: str) -> IdempotencyRecord | None:
        record = IdempotencyRecord(**key, request_hash=request_hash, state=STATE_IN_PROGRESS)
        try:
            return self.repo.create(record)
        except IntegrityError:
            self.repo.db.rollback()
            return None

    @staticmethod
    def _replay(existing: IdempotencyRecord | None, request_hash: str) -> IdempotencyReplay:
        if existing is None or existing.state == STATE_IN_PROGRESS:
            raise AppError(ErrorCatalog.IDEMPOTENCY_REQUEST_IN_PROGRESS)
        if existing.request_hash != request_hash:
            raise AppError(ErrorCatalog.IDEMPOTENCY_KEY_REUSED_WITH_DIFFERENT_PAYLOAD)
        if existing.status_code is None or existing.response_body is None:
            raise AppError(ErrorCatalog.IDEMPOTENCY_REQUEST_IN_PROGRESS)
        metrics.increment_idempotency_replay()
        return IdempotencyReplay.from_record(existing)


def begin_idempotent(request: Request, db, *, custodian_id: str, payload: object):
    """Claim the request's idempotency key; returns ``(context, replay)``, exactly one of them set.

    The context is kept on ``request.state`` so the error handlers can store a failure.
    """
    idempotency_key = request.headers.get(IDEMPOTENCY_HEADER)
    if not idempotency_key:
        raise AppError(ErrorCatalog.IDEMPOTENCY_KEY_REQUIRED)
    context, replay = IdempotencyService(db).start(
        custodian_id=custodian_id,
        endpoint=request.url.path,
        method=request.method,
        idempotency_key=idempotency_key,
        request_hash=request_fingerprint(payload),
    )
    if context is not None:
        request.state.idempotency = context
    return context, replay
