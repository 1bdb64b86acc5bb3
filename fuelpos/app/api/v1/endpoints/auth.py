from __future__ import annotations

from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy import func
from sqlalchemy.orm import Session

from fuelpos.app.api.deps import oauth2_scheme
from fuelpos.app.core.config import settings
from fuelpos.app.core.database import get_db
from fuelpos.app.core.security import (
    create_access_token,
    revoke_token,
    verify_password,
)
from fuelpos.app.core.timeutils import ensure_utc
from fuelpos.app.middleware.rate_limit import InMemoryRateLimiter
from fuelpos.app.models.user import User
from fuelpos.app.services.audit import log_action

router = APIRouter()

# ─── Rate Limiting ───────────────────────────────────────────────────────────
# Per-IP, in process memory.
login_limiter = InMemoryRateLimiter(window_seconds=60, max_attempts=10)


@router.post("/login/access-token")
def login_access_token(
    request: Request,
    db: Session = Depends(get_db),
    form_data: OAuth2PasswordRequestForm = Depends(),
) -> dict[str, str]:
    ip = request.client.host if request.client else "unknown"
    login_limiter.check(ip)

    user = (
        db.query(User)
        .filter(func.lower(User.username) == form_data.username.lower())
        .first()
    )
    now = datetime.now(timezone.utc)

    if user and user.locked_until:
        locked_until = ensure_utc(user.locked_until)
        if now < locked_until:
            remaining = int((locked_until - now).total_seconds() // 60) + 1
            log_action(
                db,
                user_id=user.id,
                action="LOGIN_BLOCKED",
                resource_type="auth",
                resource_id=form_data.username,
                ip_address=ip,
                changes={"reason": "account_locked"},
            )
            db.commit()
            raise HTTPException(
                status_code=status.HTTP_423_LOCKED,
                detail=f"Account locked. Try again in {remaining} minutes.",
            )
        # Lockout expired
        user.failed_login_attempts = 0
        user.locked_until = None

    if not user or not verify_password(form_data.password, user.hashed_password):
        if user:
            user.failed_login_attempts = (user.failed_login_attempts or 0) + 1
            if user.failed_login_attempts >= settings.MAX_LOGIN_ATTEMPTS:
                user.locked_until = now + timedelta(minutes=settings.LOCKOUT_MINUTES)
                log_action(
                    db,
                    user_id=user.id,
                    action="ACCOUNT_LOCKED",
                    resource_type="auth",
                    resource_id=form_data.username,
                    ip_address=ip,
                    changes={"failed_attempts": user.failed_login_attempts},
                )

        log_action(
            db,
            user_id=user.id if user else None,
            action="LOGIN_FAILED",
            resource_type="auth",
            resource_id=form_data.username,
            ip_address=ip,
            changes={"reason": "invalid_credentials"},
        )
        db.commit()
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        log_action(
            db,
            user_id=user.id,
            action="LOGIN_FAILED",
            resource_type="auth",
            resource_id=form_data.username,
            ip_address=ip,
            changes={"reason": "inactive_user"},
        )
        db.commit()
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Inactive user"
        )

    user.failed_login_attempts = 0
    user.locked_until = None

    log_action(
        db,
        user_id=user.id,
        action="LOGIN_SUCCESS",
        resource_type="auth",
        resource_id=str(user.id),
        ip_address=ip,
        changes={
            "username": user.username,
            "role": user.role.value,
            "station_id": str(user.station_id) if user.station_id else None,
        },
    )
    db.commit()

    return {
        "access_token": create_access_token(subject=str(user.id)),
        "token_type": "bearer",
    }


# ─── Logout ──────────────────────────────────────────────────────────────────


@router.post("/logout")
def logout(token: str = Depends(oauth2_scheme)) -> dict[str, str]:
    """Invalidate the current access token."""
    revoke_token(token)
    return {"detail": "Logged out successfully"}
