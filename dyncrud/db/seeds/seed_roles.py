"""Seed default roles into the database."""

from sqlalchemy.orm import Session
from dyncrud.core.security import ROLE_LEVELS
from dyncrud.models.role import Role

ROLE_DESCRIPTIONS = {
    "super_admin": "Full system access, manage operators and the catalog",
    "admin": "Dynamic CRUD on catalog tables, audit and ledger review",
    "team_lead": "Review access with elevated visibility",
    "member": "Authenticated operator without dynamic CRUD access",
    "viewer": "Read-only access to typed endpoints",
}


def seed_roles(db: Session) -> None:
    """Insert default roles if they don't already exist."""
    for name, level in ROLE_LEVELS.items():
        existing = db.query(Role).filter(Role.name == name).first()
        if not existing:
            db.add(Role(name=name, level=level, description=ROLE_DESCRIPTIONS.get(name)))

    db.commit()
    print(f"✅ Seeded {len(ROLE_LEVELS)} roles")
