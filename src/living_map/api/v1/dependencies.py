"""Shared API dependencies for authentication and common functionality."""

from datetime import UTC, datetime, timedelta
from typing import Annotated

from fastapi import Depends, HTTPException, Query, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from living_map.core.settings import settings
from living_map.db.session import get_db
from living_map.services.authz import is_admin, is_moderator
from living_map.services.geo import BoundingBox

# HTTP Bearer scheme for JWT authentication
bearer_scheme = HTTPBearer()

# Type alias for database session dependency
SessionDep = Annotated[Session, Depends(get_db)]


def create_access_token(user_id: str, extra_claims: dict[str, str] | None = None) -> str:
    """Create a JWT access token whose subject is the opaque user id."""
    to_encode: dict[str, object] = {"sub": user_id}
    if extra_claims:
        to_encode.update(extra_claims)
    to_encode["exp"] = datetime.now(UTC) + timedelta(minutes=settings.access_token_expire_minutes)
    encoded_jwt: str = jwt.encode(
        to_encode,
        settings.secret_key,
        algorithm=settings.jwt_algorithm,
    )
    return encoded_jwt


def get_current_user_id(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer_scheme)],
) -> str:
    """Return the user id carried in the bearer token.

    Identity is owned by the auth provider; the id is trusted as given.

    Raises:
        HTTPException: If the token is invalid or has no subject.
    """
    try:
        payload = jwt.decode(
            credentials.credentials,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError as err:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        ) from err

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )
    return subject


# Type alias for current user dependency
CurrentUserDep = Annotated[str, Depends(get_current_user_id)]


def require_admin(user_id: CurrentUserDep, db: SessionDep) -> str:
    if not is_admin(db, user_id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin role required")
    return user_id


def require_moderator(user_id: CurrentUserDep, db: SessionDep) -> str:
    if not is_moderator(db, user_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Moderator role required"
        )
    return user_id


AdminDep = Annotated[str, Depends(require_admin)]
ModeratorDep = Annotated[str, Depends(require_moderator)]


def get_bbox(
    south: Annotated[float, Query(ge=-90, le=90)],
    west: Annotated[float, Query(ge=-180, le=180)],
    north: Annotated[float, Query(ge=-90, le=90)],
    east: Annotated[float, Query(ge=-180, le=180)],
) -> BoundingBox:
    """Build the viewport box from query parameters; bad boxes surface as 422."""
    return BoundingBox(south=south, west=west, north=north, east=east)


BBoxDep = Annotated[BoundingBox, Depends(get_bbox)]
