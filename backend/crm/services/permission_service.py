# Overview: Service-layer operations for permission; encapsulates business logic and database work.

"""
Permission Evaluator

evaluate(role, resource, action) answers allow/deny for a role:

1. PENDING is denied unconditionally.
2. An exact (role, resource, action) row decides when present.
3. Otherwise, or if the table cannot be read, the conservative
   role-hierarchy fallback in crm.permissions.definitions decides.

The fallback is a degrade-to-default path so the system stays usable on an
unseeded table. It never grants more than the seeded defaults do.
"""

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..errors import ConflictError, NotFoundError, PermissionDeniedError
from ..extensions import db
from ..models import Permission
from ..permissions import Role, RESOURCES, ACTIONS, DEFAULT_PERMISSIONS, fallback_allows


def evaluate(role: Role | str, resource: str, action: str) -> bool:
    role = Role.parse(role)

    if role == Role.PENDING:
        return False

    try:
        row = db.session.query(Permission).filter_by(
            role=role.value,
            resource=resource,
            action=action,
        ).first()
    except SQLAlchemyError:
        current_app.logger.warning(
            "Permission lookup failed for %s %s:%s; using role fallback",
            role.value, resource, action, exc_info=True,
        )
        db.session.rollback()
        row = None

    if row is not None:
        return bool(row.is_allowed)

    return fallback_allows(role, resource, action)


def require(role: Role | str, resource: str, action: str) -> None:
    """Raise PermissionDeniedError unless evaluate() allows."""
    if not evaluate(role, resource, action):
        raise PermissionDeniedError(
            "Permission denied",
            required_permission=f"{resource}:{action}",
        )


def list_permissions() -> list[Permission]:
    return db.session.query(Permission).order_by(
        Permission.role, Permission.resource, Permission.action
    ).all()


def _check_vocabulary(role: str, resource: str, action: str) -> Role:
    parsed = Role.parse(role)
    if resource not in RESOURCES:
        raise ValueError(f"Unknown resource: {resource}")
    if action not in ACTIONS:
        raise ValueError(f"Unknown action: {action}")
    return parsed


def create_permission(*, role: str, resource: str, action: str, is_allowed: bool = True) -> Permission:
    parsed = _check_vocabulary(role, resource, action)
    permission = Permission(
        role=parsed.value,
        resource=resource,
        action=action,
        is_allowed=is_allowed,
    )
    db.session.add(permission)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(f"Permission {parsed.value} {resource}:{action} already exists")
    return permission


def update_permission(permission_id: int, *, is_allowed: bool) -> Permission:
    permission = db.session.get(Permission, permission_id)
    if not permission:
        raise NotFoundError("Permission not found")
    permission.is_allowed = is_allowed
    db.session.commit()
    return permission


def delete_permission(permission_id: int) -> None:
    permission = db.session.get(Permission, permission_id)
    if not permission:
        raise NotFoundError("Permission not found")
    db.session.delete(permission)
    db.session.commit()


def seed_default_permissions() -> int:
    """
    Insert any missing rows of the default matrix.

    Idempotent: existing rows (including ones an admin flipped) are kept.
    Returns the number of rows created.
    """
    existing = {
        (p.role, p.resource, p.action)
        for p in db.session.query(Permission).all()
    }

    created_count = 0
    for role, resource, action, is_allowed in DEFAULT_PERMISSIONS:
        if (role.value, resource, action) in existing:
            continue
        db.session.add(Permission(
            role=role.value,
            resource=resource,
            action=action,
            is_allowed=is_allowed,
        ))
        created_count += 1

    db.session.commit()
    return created_count


def allowed_permissions(role: Role | str) -> list[str]:
    """Every "resource:action" the role is allowed, for clients to render."""
    return [
        f"{resource}:{action}"
        for resource in RESOURCES
        for action in ACTIONS
        if evaluate(role, resource, action)
    ]
