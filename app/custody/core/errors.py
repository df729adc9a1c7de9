import logging
import uuid
from datetime import date, datetime
from decimal import Decimal

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.custody.core.error_catalog import AppError, ErrorCatalog, ErrorDefinition
from app.custody.core.metrics import metrics

logger = logging.getLogger(__name__)

_HTTP_ERRORS = {
    401: ErrorCatalog.INVALID_TOKEN,
    403: ErrorCatalog.PERMISSION_DENIED,
    404: ErrorCatalog.NOT_FOUND,
}

_LOCK_TIMEOUT_MARKERS = (
    "lock timeout",
    "deadlock detected",
    "database is locked",
    "could not obtain lock",
    "could not serialize access",
)


def is_lock_timeout(exc: Exception) -> bool:
    if not isinstance(exc, OperationalError):
        return False
    message = str(exc).lower()
    return any(marker in message for marker in _LOCK_TIMEOUT_MARKERS)


def json_safe(value):
    """Money stays exact as a string; ids and timestamps use their text form."""
    if isinstance(value, Decimal):
        return format(value, "f")
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(key): json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [json_safe(item) for item in value]
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


def error_body(*, code: str, message: str, details: object, trace_id: str) -> dict:
    return {"code": code, "message": message, "details": json_safe(details), "trace_id": trace_id}


def error_response(code: str, message: str, details: object, trace_id: str, status_code: int) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=error_body(code=code, message=message, details=details, trace_id=trace_id),
    )


def _respond(
    request: Request,
    *,
    code: str,
    message: str,
    status_code: int,
    details: object,
    exc: Exception,
) -> JSONResponse:
    request.state.error_code = code
    request.state.error_class = exc.__class__.__name__
    body = error_body(code=code, message=message, details=details, trace_id=getattr(request.state, "trace_id", ""))
    # A failed mutation is remembered under its idempotency key so a retry sees the same answer.
    idempotency = getattr(request.state, "idempotency", None)
    if idempotency is not None:
        idempotency.record_failure(status_code=status_code, response_body=body)
    return JSONResponse(status_code=status_code, content=body)


def _from_catalog(request: Request, error: ErrorDefinition, exc: Exception, details: object = None) -> JSONResponse:
    return _respond(
        request,
        code=error.code,
        message=error.message,
        status_code=error.status_code,
        details=details,
        exc=exc,
    )


def _validation_error_details(exc: RequestValidationError) -> dict:
    errors = []
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ())]
        field = ".".join(part for part in loc if part not in {"body", "query", "path", "header"})
        errors.append(
            {
                "field": field or None,
                "message": error.get("msg", "Invalid value"),
                "type": error.get("type", "validation_error"),
                "input": error.get("input"),
            }
        )
    return {"errors": errors}


def setup_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        return _from_catalog(request, exc.error, exc, exc.details)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return _from_catalog(request, ErrorCatalog.VALIDATION_ERROR, exc, _validation_error_details(exc))

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        known = _HTTP_ERRORS.get(exc.status_code)
        if known is not None:
            return _from_catalog(request, known, exc, {"message": str(exc.detail)} if exc.detail else None)
        return _respond(
            request,
            code=f"HTTP_{exc.status_code}",
            message=str(exc.detail or "HTTP error"),
            status_code=exc.status_code,
            details=None,
            exc=exc,
        )

    @app.exception_handler(StaleDataError)
    async def stale_data_handler(request: Request, exc: StaleDataError):
        return _from_catalog(request, ErrorCatalog.CONCURRENT_MODIFICATION, exc, {"type": exc.__class__.__name__})

    @app.exception_handler(IntegrityError)
    async def integrity_error_handler(request: Request, exc: IntegrityError):
        return _from_catalog(request, ErrorCatalog.CONCURRENT_MODIFICATION, exc, {"type": exc.__class__.__name__})

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        if is_lock_timeout(exc):
            metrics.increment_lock_wait_timeout()
            return _from_catalog(request, ErrorCatalog.LOCK_TIMEOUT, exc, {"type": exc.__class__.__name__})
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _from_catalog(request, ErrorCatalog.INTERNAL_ERROR, exc, {"type": exc.__class__.__name__})
