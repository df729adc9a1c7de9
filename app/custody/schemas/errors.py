from pydantic import BaseModel


class ApiErrorResponse(BaseModel):
    code: str
    message: str
    details: dict | list | None = None
    trace_id: str | None = None


def error_responses(*status_codes: int) -> dict:
    """OpenAPI ``responses`` entries that all use the shared error envelope."""
    return {status_code: {"model": ApiErrorResponse} for status_code in status_codes}


LEDGER_ERROR_RESPONSES = error_responses(401, 403, 404, 409, 422)
