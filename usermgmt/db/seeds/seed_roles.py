"""Seed the permission catalog and the built-in roles."""

from sqlalchemy.orm import Session

from usermgmt.models.role import Permission, Role, RolePermission

PERMISSION_CATALOG = [
    ("users", "read", "View users"),
    ("users", "create", "Create users"),
    ("users", "update", "Update any user"),
    ("users", "delete", "Delete users"),
    ("users", "activate", "Activate or deactivate accounts"),
    ("profiles", "read", "View profiles"),
    ("profiles", "update", "Update any profile"),
    ("profiles", "delete", "Delete any profile"),
    ("logs", "read", "View request logs"),
    ("logs", "delete", "Purge request logs"),
    ("notifications", "read", "View notifications"),
    ("notifications", "create", "Create notifications and types"),
    ("notifications", "update", "Update notifications"),
    ("notifications", "send", "Send or retry notifications"),
    ("roles", "manage", "Manage roles and permissions"),
    ("admin", "full", "Full administrative access"),
]

DEFAULT_ROLES = {
    "admin": {
        "description": "Full administrative access",
        "permissions": [f"{r}:{a}" for r, a, _ in PERMISSION_CATALOG],
    },
    "moderator": {
        "description": "Read access to users, profiles and logs",
        "permissions": ["users:read", "profiles:read", "logs:read"],
    },
    "user": {
        # own profile access comes from the ownership check
        "description": "Standard account",
        "permissions": [],
    },
}

DEFAULT_ROLE = "user"


def seed_permissions(db: Session) -> dict[str, Permission]:
    """Insert catalog entries that are missing; returns all by name."""
    existing = {p.name: p for p in db.query(Permission).all()}
    for resource, action, description in PERMISSION_CATALOG:
        name = f"{resource}:{action}"
        if name not in existing:
            permission = Permission(name=name, resource=resource, action=action, description=description)
            db.add(permission)
            existing[name] = permission
    db.commit()
    return existing


def seed_roles(db: Session) -> None:
    """Insert default roles and their permissions if they don't already exist."""
    permissions = seed_permissions(db)

    for name, data in DEFAULT_ROLES.items():
        role = db.query(Role).filter(Role.name == name).first()
        if role is not None:
            continue
        role = Role(name=name, description=data["description"], is_active=True)
        db.add(role)
        db.flush()
        for permission_name in data["permissions"]:
            db.add(RolePermission(role_id=role.id, permission_id=permissions[permission_name].id))

    db.commit()
    print(f"✅ Seeded {len(PERMISSION_CATALOG)} permissions and {len(DEFAULT_ROLES)} roles")
