# Overview: Staff role enumeration and hierarchy helpers.

from __future__ import annotations

import enum


class Role(str, enum.Enum):
    """
    Staff roles, declared lowest to highest.

    Ordering is explicit (rank) rather than alphabetical so that
    comparisons like role.at_least(Role.HEAD) read naturally.
    """
    PENDING = "PENDING"
    EMPLOYEE = "EMPLOYEE"
    TEAM_LEADER = "TEAM_LEADER"
    HEAD = "HEAD"
    ADMIN = "ADMIN"
    CEO = "CEO"

    @property
    def rank(self) -> int:
        return _RANKS[self]

    def at_least(self, other: "Role") -> bool:
        return self.rank >= other.rank

    @classmethod
    def parse(cls, value: "Role | str") -> "Role":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).upper())
        except ValueError:
            raise ValueError(f"Unknown role: {value}") from None


_RANKS = {role: index for index, role in enumerate(Role)}

# Full-visibility, full-control roles
ADMIN_ROLES = frozenset({Role.ADMIN, Role.CEO})

# Roles that may approve or reject transfer requests
TRANSFER_APPROVER_ROLES = frozenset({Role.ADMIN, Role.HEAD})

# Roles that actually hold customers as salespeople; customers held by any
# other role are considered to be sitting in the admin pool
SALES_ROLES = frozenset({Role.EMPLOYEE, Role.TEAM_LEADER, Role.HEAD})


def has_role(user_role: Role | str, required: Role | str) -> bool:
    return Role.parse(user_role).at_least(Role.parse(required))
