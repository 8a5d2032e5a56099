# Overview: Resource/action vocabulary and the default permission matrix.

"""
Permission rows are (role, resource, action) -> is_allowed.

DEFAULT_PERMISSIONS seeds the table; the evaluator falls back to
fallback_allows() when a row is missing or the table cannot be read.
The fallback never grants more than the seeded matrix does.
"""

from __future__ import annotations

from .roles import Role


class Resource:
    USERS = "users"
    CUSTOMERS = "customers"
    SETTINGS = "settings"
    REPORTS = "reports"


class Action:
    VIEW = "view"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    APPROVE = "approve"
    ALLOCATE = "allocate"
    EXPORT = "export"


RESOURCES = (Resource.USERS, Resource.CUSTOMERS, Resource.SETTINGS, Resource.REPORTS)
ACTIONS = (
    Action.VIEW,
    Action.CREATE,
    Action.UPDATE,
    Action.DELETE,
    Action.APPROVE,
    Action.ALLOCATE,
    Action.EXPORT,
)


def fallback_allows(role: Role, resource: str, action: str) -> bool:
    """Conservative role-hierarchy rule used when no table row applies."""
    if role == Role.PENDING:
        return False
    if role in (Role.ADMIN, Role.CEO):
        return True
    if role == Role.HEAD:
        return action != Action.APPROVE
    if role == Role.TEAM_LEADER:
        if resource == Resource.CUSTOMERS and action == Action.ALLOCATE:
            return True
        return action in (Action.VIEW, Action.CREATE, Action.UPDATE)
    if role == Role.EMPLOYEE:
        return action in (Action.VIEW, Action.CREATE)
    return False


def _default_matrix() -> list[tuple[Role, str, str, bool]]:
    rows = []
    for role in Role:
        if role == Role.PENDING:
            continue
        for resource in RESOURCES:
            for action in ACTIONS:
                rows.append((role, resource, action, fallback_allows(role, resource, action)))
    return rows


# (role, resource, action, is_allowed)
DEFAULT_PERMISSIONS = _default_matrix()
