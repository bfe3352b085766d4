"""Request dependencies: database session, service and authenticated identity."""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from basecore.db import get_db
from auction_service.security import decode_access_token, identity_from_claims
from auction_service.service import AuctionService

bearer_scheme = HTTPBearer(auto_error=False)


def get_auction_service(db: Session = Depends(get_db)) -> AuctionService:
    return AuctionService(db)


def require_identity(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> str:
    """
    Resolve the caller's identity from the bearer token.

    Raises 401 when the token is missing, invalid or carries no username.
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    claims = decode_access_token(credentials.credentials)
    identity = identity_from_claims(claims) if claims else None

    if not identity:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return identity
