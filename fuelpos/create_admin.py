"""One-time script to create or reset an admin user.

Usage:
    python -m fuelpos.create_admin
"""

from __future__ import annotations

import getpass

from sqlalchemy import func

from fuelpos.app.core.database import SessionLocal
from fuelpos.app.core.security import get_password_hash, validate_password_strength

# Import all models so SQLAlchemy resolves relationships
import fuelpos.app.models.registry  # noqa: F401

from fuelpos.app.models.permission import Role
from fuelpos.app.models.user import RoleEnum, User


def main() -> None:
    username = input("Username [admin]: ").strip() or "admin"
    password = getpass.getpass("Password: ")
    if not password:
        print("Error: password cannot be empty.")
        return
    pw_error = validate_password_strength(password)
    if pw_error:
        print(f"Error: {pw_error}")
        return

    db = SessionLocal()
    try:
        admin_role = db.query(Role).filter(Role.name == "ADMIN").first()
        existing = db.query(User).filter(
            func.lower(User.username) == username.lower()
        ).first()
        if existing:
            # Reset password, unlock, activate and promote
            existing.hashed_password = get_password_hash(password)
            existing.is_active = True
            existing.failed_login_attempts = 0
            existing.locked_until = None
            existing.role = RoleEnum.ADMIN
            existing.station_id = None
            if admin_role:
                existing.role_id = admin_role.id
            db.commit()
            print("Admin user already exists, password reset.")
            print(f"  ID:       {existing.id}")
            print(f"  Username: {existing.username}")
            return

        user = User(
            username=username,
            hashed_password=get_password_hash(password),
            role=RoleEnum.ADMIN,
            role_id=admin_role.id if admin_role else None,
        )
        db.add(user)
        db.commit()
        db.refresh(user)

        print("Admin user created.")
        print(f"  ID:       {user.id}")
        print(f"  Username: {username}")
        if admin_role is None:
            print("  WARNING:  ADMIN role not found; run the migrations or the seed script first.")
    finally:
        db.close()


if __name__ == "__main__":
    main()
