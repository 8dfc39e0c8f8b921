"""Seed the super-admin user from env vars."""

from sqlalchemy.orm import Session
from dyncrud.models.user import User
from dyncrud.models.role import Role
from dyncrud.core.config import settings
from dyncrud.services.auth_service import auth_service


def seed_super_admin(db: Session) -> None:
    """Create the super-admin user if not already present."""
    super_admin_role = db.query(Role).filter(Role.name == "super_admin").first()
    if not super_admin_role:
        print("⚠️  super_admin role not found. Run seed_roles first.")
        return

    existing = db.query(User).filter(User.email == settings.SUPER_ADMIN_EMAIL).first()
    if existing:
        print(f"ℹ️  Super admin '{settings.SUPER_ADMIN_EMAIL}' already exists, skipping.")
        return

    auth_service.create_user(
        db,
        settings.SUPER_ADMIN_EMAIL,
        settings.SUPER_ADMIN_PASSWORD,
        "Super Admin",
        role_name="super_admin",
    )
    print(f"✅ Created super admin: {settings.SUPER_ADMIN_EMAIL}")
