# Overview: Permission system package.
# Re-exports the role enumeration and permission vocabulary.

from .roles import Role, ADMIN_ROLES, SALES_ROLES, TRANSFER_APPROVER_ROLES, has_role
from .definitions import (
    Resource,
    Action,
    RESOURCES,
    ACTIONS,
    DEFAULT_PERMISSIONS,
    fallback_allows,
)

__all__ = [
    "Role",
    "ADMIN_ROLES",
    "SALES_ROLES",
    "TRANSFER_APPROVER_ROLES",
    "has_role",
    "Resource",
    "Action",
    "RESOURCES",
    "ACTIONS",
    "DEFAULT_PERMISSIONS",
    "fallback_allows",
]
