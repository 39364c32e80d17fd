"""
auth/seed.py -- Idempotent seeding of the default roles and permissions.

Admin gets every permission; Users gets the two profile permissions. Running
the seeder twice changes nothing.
"""

from __future__ import annotations

import logging

from auth.store import UserStore

logger = logging.getLogger("monoauth.seed")

PERMISSIONS: list[str] = [
    # User management
    "read_users",
    "create_users",
    "update_users",
    "delete_users",
    # Profiles
    "read_profiles",
    "update_profiles",
    "delete_profiles",
    # Roles
    "read_roles",
    "create_roles",
    "update_roles",
    "delete_roles",
    # Permissions
    "read_permissions",
    "create_permissions",
    "update_permissions",
    "delete_permissions",
]

ADMIN_ROLE = "Admin"
USER_ROLE = "Users"

ROLE_PERMISSIONS: dict[str, list[str]] = {
    ADMIN_ROLE: PERMISSIONS,
    USER_ROLE: ["read_profiles", "update_profiles"],
}


def seed_roles_and_permissions(store: UserStore) -> int:
    """Create the default roles, permissions and grants. Returns the number of new grants."""
    permission_ids = {name: store.ensure_permission(name) for name in PERMISSIONS}
    granted = 0
    for role_name, names in ROLE_PERMISSIONS.items():
        role_id = store.ensure_role(role_name)
        for name in names:
            if store.grant_permission(role_id, permission_ids[name]):
                granted += 1
    logger.info("Seeded %d roles, %d permissions, %d new grants", len(ROLE_PERMISSIONS), len(PERMISSIONS), granted)
    return granted
