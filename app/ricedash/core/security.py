from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from fastapi.security import HTTPBearer
from jose import jwt
from pydantic import BaseModel

from app.ricedash.core.config import settings

bearer_scheme = HTTPBearer(auto_error=False)


class TokenData(BaseModel):
    """Verified claims of an identity-store session token.

    Only ``sub`` is trusted for authorization. The metadata claims are a
    convenience copy and may be stale; role and locations are always read
    from the user directory.
    """

    sub: str
    username: str | None = None
    metadata: dict[str, Any] | None = None


def create_access_token(data: dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=60))
    to_encode.update({"exp": expire})
    if settings.TOKEN_AUDIENCE:
        to_encode.setdefault("aud", settings.TOKEN_AUDIENCE)
    return jwt.encode(to_encode, settings.TOKEN_SECRET_KEY, algorithm=settings.TOKEN_ALGORITHM)


def decode_token(token: str) -> dict[str, Any]:
    options = {"verify_aud": bool(settings.TOKEN_AUDIENCE)}
    return jwt.decode(
        token,
        settings.TOKEN_SECRET_KEY,
        algorithms=[settings.TOKEN_ALGORITHM],
        audience=settings.TOKEN_AUDIENCE,
        options=options,
    )


def create_identity_token(external_id: str, *, username: str | None = None, expires_delta: Optional[timedelta] = None) -> str:
    claims: dict[str, Any] = {"sub": external_id}
    if username:
        claims["username"] = username
    return create_access_token(claims, expires_delta=expires_delta)
