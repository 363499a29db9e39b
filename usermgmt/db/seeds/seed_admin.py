"""Seed the initial admin user from env vars."""

from sqlalchemy.orm import Session

from usermgmt.core.config import settings
from usermgmt.core.security import hash_password
from usermgmt.models.role import Role
from usermgmt.models.user import User


def seed_admin(db: Session) -> None:
    """Create the admin user if not already present."""
    admin_role = db.query(Role).filter(Role.name == "admin").first()
    if not admin_role:
        print("⚠️  admin role not found. Run seed_roles first.")
        return

    email = settings.ADMIN_EMAIL.strip().lower()
    existing = db.query(User).filter(User.email == email).first()
    if existing:
        print(f"ℹ️  Admin '{email}' already exists, skipping.")
        return

    admin = User(
        email=email,
        hashed_password=hash_password(settings.ADMIN_PASSWORD),
        full_name="Administrator",
        is_active=True,
        email_verified=True,
        role_id=admin_role.id,
    )
    db.add(admin)
    db.commit()
    print(f"✅ Created admin: {email}")
