from fastapi import Depends, Request
from jose import JWTError
from pydantic import ValidationError

from app.custody.core.context import RequestContext, build_request_context, get_request_context
from app.custody.core.error_catalog import AppError, ErrorCatalog
from app.custody.core.security import TokenData, decode_token, oauth2_scheme
from app.custody.core.tiers import normalize_tier
from app.custody.db.session import get_db
from app.custody.repos.custodians import CustodianRepository


def get_current_token_data(token: str = Depends(oauth2_scheme)) -> TokenData:
    try:
        payload = decode_token(token)
        return TokenData(**payload)
    except (JWTError, ValidationError, TypeError) as exc:
        raise AppError(ErrorCatalog.INVALID_TOKEN) from exc


def get_current_custodian(token_data: TokenData = Depends(get_current_token_data), db=Depends(get_db)):
    try:
        custodian = CustodianRepository(db).get(token_data.sub)
    except ValueError as exc:
        raise AppError(ErrorCatalog.INVALID_TOKEN) from exc
    if custodian is None:
        raise AppError(ErrorCatalog.INVALID_TOKEN)
    if normalize_tier(token_data.tier) != normalize_tier(custodian.tier):
        raise AppError(ErrorCatalog.PERMISSION_DENIED, details={"message": "token tier does not match custodian"})
    return custodian


def require_active_custodian(custodian=Depends(get_current_custodian)):
    if not custodian.is_active:
        raise AppError(ErrorCatalog.CUSTODIAN_INACTIVE)
    return custodian


def require_request_context(
    request: Request,
    token_data: TokenData = Depends(get_current_token_data),
) -> RequestContext:
    context = build_request_context(
        custodian_id=token_data.sub,
        tier=token_data.tier,
        trace_id=getattr(request.state, "trace_id", ""),
    )
    request.state.context = context
    return context


def require_tier(*tiers: str):
    allowed = {normalize_tier(tier) for tier in tiers}

    def dependency(custodian=Depends(require_active_custodian)):
        if normalize_tier(custodian.tier) not in allowed:
            raise AppError(
                ErrorCatalog.PERMISSION_DENIED,
                details={"allowed_tiers": sorted(tier.value for tier in allowed)},
            )
        return custodian

    return dependency


__all__ = [
    "get_current_token_data",
    "get_current_custodian",
    "require_active_custodian",
    "require_request_context",
    "get_request_context",
    "require_tier",
]
