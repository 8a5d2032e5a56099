# Overview: Service-layer operations for customer transfer requests; encapsulates business logic and database work.

"""
Transfer Request Service

LIFECYCLE:
1. PENDING: a staff member who does not hold the customer asks for it to
   move to another staff member, with a reason
2. APPROVED: ADMIN/HEAD approve; holder changes and a ledger row is written
3. REJECTED: ADMIN/HEAD reject with a reason; nothing else changes

APPROVED and REJECTED are terminal. At most one PENDING request exists per
customer; the partial unique index uq_transfer_requests_one_pending backs
the pre-check so concurrent inserts cannot both succeed.
"""

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..errors import BusinessRuleError, ConflictError, NotFoundError, PermissionDeniedError
from ..extensions import db
from ..models import Customer, TransferRequest, User
from ..models.allocation import (
    TRANSFER_STATUS_APPROVED,
    TRANSFER_STATUS_PENDING,
    TRANSFER_STATUS_REJECTED,
)
from ..permissions import TRANSFER_APPROVER_ROLES
from crm.time_utils import utcnow
from . import ledger_service
from .audit_service import AuditEntry
from .concurrency import atomic, lock_for_update


DUPLICATE_PENDING_MESSAGE = "진행 중인 변경 요청이 있습니다."


def request_transfer(customer_id: int, to_user_id: int, reason: str, actor: User) -> tuple[TransferRequest, AuditEntry]:
    def _op():
        customer = (
            db.session.query(Customer)
            .filter(Customer.id == customer_id, Customer.is_deleted.is_(False))
            .first()
        )
        if not customer:
            raise NotFoundError("고객을 찾을 수 없습니다.")
        if customer.assigned_user_id is None:
            raise BusinessRuleError("담당자가 지정되지 않은 고객입니다.")
        if customer.assigned_user_id == actor.id:
            raise BusinessRuleError("본인이 담당 중인 고객은 변경 요청할 수 없습니다.")

        target = db.session.get(User, to_user_id)
        if not target:
            raise NotFoundError("담당자를 찾을 수 없습니다.")
        if not target.is_active:
            raise BusinessRuleError("비활성화된 사용자에게는 변경할 수 없습니다.")
        if customer.assigned_user_id == target.id:
            raise BusinessRuleError("이미 해당 담당자에게 배정되어 있습니다.")

        pending = (
            db.session.query(TransferRequest)
            .filter(
                TransferRequest.customer_id == customer_id,
                TransferRequest.status == TRANSFER_STATUS_PENDING,
            )
            .first()
        )
        if pending:
            raise ConflictError(DUPLICATE_PENDING_MESSAGE)

        transfer = TransferRequest(
            customer_id=customer.id,
            from_user_id=customer.assigned_user_id,
            to_user_id=target.id,
            requested_by_id=actor.id,
            reason=reason,
            status=TRANSFER_STATUS_PENDING,
            created_at=utcnow(),
        )
        db.session.add(transfer)
        db.session.flush()
        return transfer.id

    try:
        transfer_id = atomic(_op)
    except IntegrityError:
        # Lost the race against a concurrent PENDING insert
        raise ConflictError(DUPLICATE_PENDING_MESSAGE) from None

    transfer = db.session.get(TransferRequest, transfer_id)
    entry = AuditEntry(
        actor_id=actor.id,
        action="REQUEST_TRANSFER",
        entity="TransferRequest",
        entity_id=transfer.id,
        changes={
            "customerId": transfer.customer_id,
            "fromUserId": transfer.from_user_id,
            "toUserId": transfer.to_user_id,
            "reason": reason,
        },
    )
    return transfer, entry


def decide(
    request_id: int,
    status: str,
    actor: User,
    *,
    rejected_reason: str | None = None,
) -> tuple[TransferRequest, AuditEntry]:
    """
    Approve or reject a PENDING request.

    The request row is locked and its status re-checked inside the
    transaction. Approval fails with ConflictError if the customer changed
    hands after the request was filed.
    """
    if actor.role_enum not in TRANSFER_APPROVER_ROLES:
        raise PermissionDeniedError("승인 권한이 없습니다.")
    if status not in (TRANSFER_STATUS_APPROVED, TRANSFER_STATUS_REJECTED):
        raise BusinessRuleError("유효하지 않은 상태입니다.")
    if status == TRANSFER_STATUS_REJECTED and not (rejected_reason or "").strip():
        raise BusinessRuleError("반려 사유를 입력해주세요.")

    def _op():
        transfer = lock_for_update(
            db.session.query(TransferRequest).filter(TransferRequest.id == request_id)
        ).first()
        if not transfer:
            raise NotFoundError("변경 요청을 찾을 수 없습니다.")
        if transfer.status != TRANSFER_STATUS_PENDING:
            raise ConflictError("이미 처리된 요청입니다.")

        now = utcnow()
        if status == TRANSFER_STATUS_APPROVED:
            customer = lock_for_update(
                db.session.query(Customer).filter(
                    Customer.id == transfer.customer_id,
                    Customer.is_deleted.is_(False),
                )
            ).first()
            if not customer:
                raise NotFoundError("고객을 찾을 수 없습니다.")
            if customer.is_public or customer.assigned_user_id != transfer.from_user_id:
                raise ConflictError("요청 이후 고객의 담당자가 변경되었습니다.")
            target = db.session.get(User, transfer.to_user_id) if transfer.to_user_id else None
            if not target or not target.is_active:
                raise BusinessRuleError("변경 대상 담당자가 비활성화되었습니다.")

            customer.assigned_user_id = target.id
            customer.assigned_at = now
            ledger_service.record_transition(
                customer_id=customer.id,
                from_user_id=transfer.from_user_id,
                to_user_id=target.id,
                allocated_by_id=actor.id,
                reason=f"담당자 변경 승인: {transfer.reason}",
            )
            transfer.rejected_reason = None
        else:
            transfer.rejected_reason = rejected_reason.strip()

        transfer.status = status
        transfer.approved_by_id = actor.id
        transfer.approved_at = now
        return transfer.id

    transfer_id = atomic(_op)

    transfer = db.session.get(TransferRequest, transfer_id)
    approved = status == TRANSFER_STATUS_APPROVED
    entry = AuditEntry(
        actor_id=actor.id,
        action="APPROVE_TRANSFER" if approved else "REJECT_TRANSFER",
        entity="TransferRequest",
        entity_id=transfer.id,
        changes={
            "customerId": transfer.customer_id,
            "fromUserId": transfer.from_user_id,
            "toUserId": transfer.to_user_id,
            "status": status,
            "rejectedReason": transfer.rejected_reason,
        },
    )
    return transfer, entry


def list_requests(*, status: str | None = None, page: int = 1, limit: int = 20) -> tuple[list[TransferRequest], int]:
    query = db.session.query(TransferRequest)
    if status:
        query = query.filter(TransferRequest.status == status)
    total = query.count()
    rows = (
        query.order_by(TransferRequest.created_at.desc(), TransferRequest.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total
