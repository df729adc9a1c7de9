from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from fastapi.security import OAuth2PasswordBearer
from jose import jwt
from pydantic import BaseModel

from app.custody.core.config import settings

# Tokens are issued by the session service; this scheme only reads the bearer header.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/session/login")

ACCESS_TOKEN_EXPIRE_MINUTES = 60


class TokenData(BaseModel):
    sub: str
    tier: str
    name: str | None = None


def create_access_token(data: dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> dict[str, Any]:
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])


def create_custodian_access_token(custodian, expires_delta: Optional[timedelta] = None) -> str:
    return create_access_token(
        {
            "sub": str(custodian.id),
            "tier": custodian.tier,
            "name": custodian.name,
        },
        expires_delta=expires_delta,
    )
