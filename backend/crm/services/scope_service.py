# Overview: Row-level view scope for customer and user listings.

"""
View-Scope Resolver

Returns SQLAlchemy criteria, never lists. Callers apply the criterion to
the listing query before offset/limit so pagination totals are correct.

    ADMIN/CEO    -> everything
    HEAD         -> same department
    TEAM_LEADER  -> same team
    otherwise    -> own rows only

A HEAD without a department (or TEAM_LEADER without a team) sees only
their own rows. Public-pool customers are visible to every staff member.
"""

from sqlalchemy import and_, select, true

from ..models import Customer, User
from ..permissions import Role, ADMIN_ROLES


def _grouping(user: User):
    role = user.role_enum
    if role in ADMIN_ROLES:
        return None, None
    if role == Role.HEAD and user.department:
        return User.department, user.department
    if role == Role.TEAM_LEADER and user.team_id is not None:
        return User.team_id, user.team_id
    return False, None


def customer_scope(user: User):
    column, value = _grouping(user)
    if column is None:
        return true()
    if column is False:
        return Customer.assigned_user_id == user.id
    holders = select(User.id).where(column == value)
    return and_(
        Customer.assigned_user_id.isnot(None),
        Customer.assigned_user_id.in_(holders),
    )


def user_scope(user: User):
    column, value = _grouping(user)
    if column is None:
        return true()
    if column is False:
        return User.id == user.id
    return column == value


def can_view_customer(user: User, customer: Customer) -> bool:
    """Scope check for a single already-loaded row."""
    role = user.role_enum
    if role in ADMIN_ROLES or customer.is_public:
        return True
    if customer.assigned_user_id == user.id:
        return True
    holder = customer.assigned_user
    if holder is None:
        return False
    if role == Role.HEAD and user.department:
        return holder.department == user.department
    if role == Role.TEAM_LEADER and user.team_id is not None:
        return holder.team_id == user.team_id
    return False
