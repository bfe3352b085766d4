from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from basecore.settings import get_settings


def create_access_token(username: str, expires_delta: timedelta | None = None) -> str:
    """Issue a signed token for ``username`` (used by tooling and tests)."""
    settings = get_settings()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode = {"sub": username, "username": username, "exp": expire}
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> dict | None:
    settings = get_settings()
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None


def identity_from_claims(claims: dict) -> str | None:
    """The authenticated username: ``username`` claim, falling back to ``sub``."""
    identity = claims.get("username") or claims.get("sub")
    return str(identity) if identity else None
