# Overview: Service-layer operations for staff accounts; removal cascades and role management.

"""
User Account Service

REMOVAL:
- deactivate (soft delete): held customers move to the acting administrator
  with one ledger row each, sessions are revoked, is_active=False.
- permanent delete: every historical reference to the account is set to
  NULL instead of cascading deletes, then the row is removed.

CEO accounts and the caller's own account cannot be removed.
"""

from __future__ import annotations

from sqlalchemy import or_

from ..errors import BusinessRuleError, ConflictError, NotFoundError, PermissionDeniedError
from ..extensions import db
from ..models import (
    AuditLog,
    CallLog,
    Customer,
    CustomerAllocation,
    DailyLimitApproval,
    Notice,
    SessionToken,
    TransferRequest,
    User,
    VisitSchedule,
)
from ..permissions import Role, has_role
from crm.time_utils import utcnow
from . import ledger_service, scope_service, session_service
from .audit_service import AuditEntry
from .concurrency import atomic, lock_for_update


def _get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError("사용자를 찾을 수 없습니다.")
    return user


def _check_removable(target: User, actor: User) -> None:
    if target.role_enum == Role.CEO:
        raise BusinessRuleError("CEO 계정은 삭제할 수 없습니다.", status_code=403)
    if target.id == actor.id:
        raise BusinessRuleError("본인 계정은 삭제할 수 없습니다.", status_code=403)
    if not has_role(actor.role, target.role):
        raise PermissionDeniedError("본인보다 높은 역할의 계정은 삭제할 수 없습니다.")


def deactivate(user_id: int, actor: User) -> tuple[dict, AuditEntry]:
    def _op():
        target = _get_user(user_id)
        _check_removable(target, actor)

        held = lock_for_update(
            db.session.query(Customer).filter(
                Customer.assigned_user_id == target.id,
                Customer.is_deleted.is_(False),
            )
        ).all()

        now = utcnow()
        reason = f"직원 삭제로 인한 자동 재배분 ({target.name})"
        for customer in held:
            customer.assigned_user_id = actor.id
            customer.assigned_at = now
        ledger_service.record_transitions(
            [(customer.id, target.id) for customer in held],
            to_user_id=actor.id,
            allocated_by_id=actor.id,
            reason=reason,
        )

        target.is_active = False
        session_service.revoke_all_user_sessions(target.id, reason="Account deactivated")
        return target.id, len(held)

    target_id, reassigned = atomic(_op)
    target = db.session.get(User, target_id)

    data = {
        "user": target.to_dict(),
        "reassignedCustomers": reassigned,
        "permanent": False,
    }
    entry = AuditEntry(
        actor_id=actor.id,
        action="DEACTIVATE_USER",
        entity="User",
        entity_id=target.id,
        changes={
            "userName": target.name,
            "userEmail": target.email,
            "userRole": target.role,
            "reassignedCustomers": reassigned,
        },
    )
    return data, entry


def _null_out(model, column, user_id: int) -> None:
    db.session.query(model).filter(column == user_id).update(
        {column: None}, synchronize_session=False
    )


def delete_permanently(user_id: int, actor: User) -> tuple[dict, AuditEntry]:
    def _op():
        target = _get_user(user_id)
        _check_removable(target, actor)
        snapshot = {"userName": target.name, "userEmail": target.email, "userRole": target.role}

        _null_out(AuditLog, AuditLog.user_id, target.id)
        _null_out(CustomerAllocation, CustomerAllocation.from_user_id, target.id)
        _null_out(CustomerAllocation, CustomerAllocation.to_user_id, target.id)
        _null_out(CustomerAllocation, CustomerAllocation.allocated_by_id, target.id)
        _null_out(Notice, Notice.author_id, target.id)
        _null_out(CallLog, CallLog.user_id, target.id)
        _null_out(VisitSchedule, VisitSchedule.user_id, target.id)
        _null_out(TransferRequest, TransferRequest.from_user_id, target.id)
        _null_out(TransferRequest, TransferRequest.to_user_id, target.id)
        _null_out(TransferRequest, TransferRequest.requested_by_id, target.id)
        _null_out(TransferRequest, TransferRequest.approved_by_id, target.id)
        _null_out(DailyLimitApproval, DailyLimitApproval.approved_by_id, target.id)
        _null_out(Customer, Customer.created_by_id, target.id)
        _null_out(Customer, Customer.public_by_id, target.id)

        db.session.query(Customer).filter(Customer.assigned_user_id == target.id).update(
            {
                Customer.assigned_user_id: None,
                Customer.assigned_at: None,
                Customer.version_id: Customer.version_id + 1,
            },
            synchronize_session=False,
        )

        _null_out(DailyLimitApproval, DailyLimitApproval.user_id, target.id)
        db.session.query(SessionToken).filter(
            SessionToken.user_id == target.id
        ).delete(synchronize_session=False)

        db.session.delete(target)
        return snapshot

    snapshot = atomic(_op)

    data = {"permanent": True, "userName": snapshot["userName"]}
    entry = AuditEntry(
        actor_id=actor.id,
        action="PERMANENT_DELETE_USER",
        entity="User",
        entity_id=user_id,
        changes=snapshot,
    )
    return data, entry


def _check_rank(target: User, new_role: Role, actor: User) -> None:
    """Nobody grants, or changes the holder of, a role ranked above their own."""
    touches_ceo = new_role == Role.CEO or target.role_enum == Role.CEO
    if touches_ceo and actor.role_enum != Role.CEO:
        raise PermissionDeniedError("CEO 권한은 CEO만 부여하거나 회수할 수 있습니다.")
    if not (has_role(actor.role, new_role) and has_role(actor.role, target.role)):
        raise PermissionDeniedError("본인보다 높은 역할은 부여하거나 변경할 수 없습니다.")


def change_role(user_id: int, new_role: str, actor: User) -> tuple[User, AuditEntry]:
    role = Role.parse(new_role)
    if role == Role.PENDING:
        raise BusinessRuleError("승인 대기 상태로 되돌릴 수 없습니다.")

    def _op():
        target = _get_user(user_id)
        if target.id == actor.id:
            raise BusinessRuleError("본인의 역할은 변경할 수 없습니다.", status_code=403)
        _check_rank(target, role, actor)
        previous = target.role
        target.role = role.value
        return target.id, previous

    target_id, previous = atomic(_op)
    target = db.session.get(User, target_id)
    entry = AuditEntry(
        actor_id=actor.id,
        action="CHANGE_ROLE",
        entity="User",
        entity_id=target.id,
        changes={"from": previous, "to": target.role},
    )
    return target, entry


def approve_user(user_id: int, actor: User, *, role: str | None = None) -> tuple[User, AuditEntry]:
    granted = Role.parse(role) if role else Role.EMPLOYEE
    if granted == Role.PENDING:
        raise BusinessRuleError("승인 시 역할은 PENDING일 수 없습니다.")

    def _op():
        target = _get_user(user_id)
        if target.role_enum != Role.PENDING:
            raise ConflictError("이미 승인된 사용자입니다.")
        _check_rank(target, granted, actor)
        target.role = granted.value
        target.approved_at = utcnow()
        return target.id

    target = db.session.get(User, atomic(_op))
    entry = AuditEntry(
        actor_id=actor.id,
        action="APPROVE_USER",
        entity="User",
        entity_id=target.id,
        changes={"role": target.role},
    )
    return target, entry


def list_users(
    actor: User,
    *,
    role: str | None = None,
    is_active: bool | None = None,
    search: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[User], int]:
    query = db.session.query(User).filter(scope_service.user_scope(actor))
    if role:
        query = query.filter(User.role == Role.parse(role).value)
    if is_active is not None:
        query = query.filter(User.is_active.is_(is_active))
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            User.name.ilike(pattern),
            User.email.ilike(pattern),
            User.username.ilike(pattern),
        ))
    total = query.count()
    rows = (
        query.order_by(User.created_at.desc(), User.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total
