# Overview: Service-layer operations for call logs; records contact attempts used by claim eligibility.

from __future__ import annotations

from ..errors import NotFoundError, PermissionDeniedError
from ..extensions import db
from ..models import CallLog, Customer, User
from ..models.activity import CALL_OUTCOME_CONNECTED, CALL_OUTCOME_NO_ANSWER
from crm.time_utils import utcnow
from . import scope_service
from .concurrency import atomic

# Content marker staff use for an unanswered call
NO_ANSWER_MARKER = "부재"


def derive_outcome(content: str) -> str:
    return CALL_OUTCOME_NO_ANSWER if NO_ANSWER_MARKER in content else CALL_OUTCOME_CONNECTED


def _live_customer(customer_id: int) -> Customer:
    customer = (
        db.session.query(Customer)
        .filter(Customer.id == customer_id, Customer.is_deleted.is_(False))
        .first()
    )
    if not customer:
        raise NotFoundError("고객을 찾을 수 없습니다.")
    return customer


def add_call_log(customer_id: int, actor: User, *, content: str, outcome: str | None = None) -> CallLog:
    """Only the holder may log a call, or anyone while the customer is public."""
    def _op():
        customer = _live_customer(customer_id)
        if not customer.is_public and customer.assigned_user_id != actor.id:
            raise PermissionDeniedError("담당 고객 또는 공개DB 고객에만 통화 기록을 남길 수 있습니다.")
        log = CallLog(
            customer_id=customer.id,
            user_id=actor.id,
            content=content,
            outcome=outcome or derive_outcome(content),
            created_at=utcnow(),
        )
        db.session.add(log)
        db.session.flush()
        return log.id

    return db.session.get(CallLog, atomic(_op))


def list_call_logs(customer_id: int, actor: User) -> list[CallLog]:
    customer = _live_customer(customer_id)
    if not scope_service.can_view_customer(actor, customer):
        raise NotFoundError("고객을 찾을 수 없습니다.")
    return (
        db.session.query(CallLog)
        .filter(CallLog.customer_id == customer_id)
        .order_by(CallLog.created_at.desc(), CallLog.id.desc())
        .all()
    )
