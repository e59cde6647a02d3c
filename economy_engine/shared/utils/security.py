from datetime import timedelta
from typing import Optional

from jose import JWTError, jwt

from economy_engine.core.config import settings
from economy_engine.shared.utils.clock import utcnow


def create_access_token(data: dict, expires_delta: timedelta | None = None):
    """Issue a bearer token; used by tooling and tests, issuance proper lives upstream."""
    to_encode = data.copy()
    if expires_delta:
        expire = utcnow() + expires_delta
    else:
        expire = utcnow() + timedelta(minutes=15)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.JWT_SECRET, algorithm=settings.JWT_ALG)


def decode_token(token: str) -> Optional[dict]:
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG])
        return payload
    except JWTError:
        return None
