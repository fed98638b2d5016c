"""Static RBAC reference data: the permission catalogue and the seeded roles.

Permission ids are ``category:action`` or ``category:resource:action``.
"""
from typing import Dict, List, Optional

from models.rbac import Permission, Role, PermissionCoverage

ACTION_LABELS = {
    "read": "View", "write": "Edit", "delete": "Delete", "create": "Create",
    "admin": "Manage", "assign": "Assign", "add": "Add", "remove": "Remove",
    "home": "Home", "project": "Projects", "task": "Tasks",
    "account": "Account", "settings": "Settings",
}

SUBJECT_LABELS = {
    "system": "system", "settings": "settings", "user": "users",
    "finance": "finance", "project": "projects", "navigation": "navigation",
    "dashboard": "dashboard", "notification": "notifications",
    "package": "work packages", "subpackage": "sub work packages",
    "task": "tasks", "member": "project members",
}

# (category, resource or None, actions)
PERMISSION_MATRIX = [
    ("finance", None, ["read", "write", "delete", "admin"]),
    ("project", None, ["read", "write", "delete", "admin"]),
    ("project", "package", ["read", "write", "delete", "create"]),
    ("project", "subpackage", ["read", "write", "delete", "create"]),
    ("project", "task", ["read", "write", "delete", "create", "assign"]),
    ("project", "member", ["read", "write", "add", "remove"]),
    ("project", "settings", ["read", "write"]),
    ("user", None, ["read", "write", "delete", "admin"]),
    ("settings", None, ["read", "write", "admin"]),
    ("system", None, ["read", "write", "admin"]),
    ("navigation", None, ["home", "project", "task", "account", "settings"]),
    ("dashboard", None, ["read"]),
    ("notification", None, ["read", "write"]),
]


def generate_permission_id(category: str, action: str, resource: Optional[str] = None) -> str:
    if resource:
        return f"{category}:{resource}:{action}"
    return f"{category}:{action}"


def parse_permission_id(permission_id: str) -> Dict[str, Optional[str]]:
    parts = permission_id.split(":")
    if len(parts) == 3:
        return {"category": parts[0], "resource": parts[1], "action": parts[2]}
    if len(parts) == 2:
        return {"category": parts[0], "resource": None, "action": parts[1]}
    raise ValueError(f"Malformed permission id: {permission_id!r}")


def generate_all_permissions() -> List[Permission]:
    permissions = []
    for category, resource, actions in PERMISSION_MATRIX:
        subject = SUBJECT_LABELS.get(resource or category, resource or category)
        for action in actions:
            label = f"{ACTION_LABELS.get(action, action)} {subject}"
            permissions.append(Permission(
                id=generate_permission_id(category, action, resource),
                name=label,
                description=f"{label} data" if category != "navigation" else f"Show the {action} navigation entry",
                resource=resource or category,
                action=action,
                category=category,
            ))
    return permissions


DEFAULT_PERMISSIONS = generate_all_permissions()
ALL_PERMISSION_IDS = [p.id for p in DEFAULT_PERMISSIONS]

_PROJECT_READ = [
    "project:read", "project:package:read", "project:subpackage:read",
    "project:task:read", "project:member:read",
]

_USER_PERMISSIONS = [
    "finance:read",
    "project:read", "project:write",
    "project:package:read", "project:package:write", "project:package:create",
    "project:subpackage:read", "project:subpackage:write", "project:subpackage:create",
    "project:task:read", "project:task:write", "project:task:create",
    "project:member:read", "project:settings:read",
    "navigation:home", "navigation:project", "navigation:task", "navigation:account",
    "dashboard:read", "notification:read",
]

_MANAGER_PERMISSIONS = _USER_PERMISSIONS + [
    "finance:write", "project:task:assign", "project:member:add",
    "user:read", "settings:read",
]

_ADMIN_PERMISSIONS = _MANAGER_PERMISSIONS + [
    "finance:delete", "finance:admin",
    "project:delete", "project:admin",
    "project:package:delete", "project:subpackage:delete", "project:task:delete",
    "project:member:write", "project:member:remove", "project:settings:write",
    "user:write", "settings:write", "system:read",
    "navigation:settings", "notification:write",
]

DEFAULT_ROLES = [
    Role(id="owner", name="Owner", description="System owner with every permission",
         level=0, permissions=list(ALL_PERMISSION_IDS)),
    Role(id="admin", name="Administrator", description="Administers most of the system",
         level=1, permissions=_ADMIN_PERMISSIONS),
    Role(id="manager", name="Manager", description="Manages departments and project teams",
         level=2, permissions=_MANAGER_PERMISSIONS),
    Role(id="user", name="User", description="Day-to-day project work",
         level=3, permissions=_USER_PERMISSIONS),
    Role(id="guest", name="Guest", description="Read-only access to projects",
         level=99, permissions=_PROJECT_READ + ["navigation:home"]),
]


def analyze_permission_coverage(roles: List[Role], permissions: List[Permission]) -> Dict[str, PermissionCoverage]:
    """Share of the known permission catalogue each role holds, in percent."""
    known = {p.id for p in permissions}
    total = len(known)
    coverage = {}
    for role in roles:
        count = len(known.intersection(role.permissions))
        coverage[role.id] = PermissionCoverage(
            permission_count=count,
            coverage=round(count / total * 100, 2) if total else 0.0,
        )
    return coverage
