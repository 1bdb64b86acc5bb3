from __future__ import annotations

from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from fuelpos.app.api.errors import to_http
from fuelpos.app.core.config import settings
from fuelpos.app.core.database import get_db
from fuelpos.app.core.exceptions import PermissionDeniedError
from fuelpos.app.core.security import ALGORITHM, is_token_revoked
from fuelpos.app.models.user import RoleEnum, User

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login/access-token")


def get_current_user(
    db: Session = Depends(get_db),
    token: str = Depends(oauth2_scheme),
) -> User:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    # Check if token was revoked (logout)
    if is_token_revoked(token):
        raise credentials_exception

    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])
        user_id: str | None = payload.get("sub")
        if user_id is None:
            raise credentials_exception
        parsed_id = UUID(user_id)
    except (JWTError, ValueError):
        raise credentials_exception

    user = db.query(User).filter(User.id == parsed_id).first()
    if user is None:
        raise credentials_exception
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Inactive user"
        )
    return user


def ensure_station_access(user: User, station_id: UUID) -> None:
    """Staff may only touch their own station; admins may touch any."""
    if user.role == RoleEnum.ADMIN:
        return
    if user.station_id != station_id:
        raise to_http(
            PermissionDeniedError(
                "You do not have access to this station",
                details={"station_id": str(station_id)},
            )
        )
