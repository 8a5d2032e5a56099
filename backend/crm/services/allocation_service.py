# Overview: Allocation Engine; every customer ownership change goes through here.

"""
Allocation Engine

OPERATIONS:
- allocate: admin-directed move of a set of customers to one staff member
- bulk_allocate_rows: spreadsheet import, create/update by phone, optional assignee
- reclaim: pull a staff member's customers back into the admin pool
- set_public: release customers to (or withdraw them from) the public pool
- claim: a staff member takes a public customer after a real contact attempt

TRANSACTIONS:
Each operation (each row, for bulk import; each batch, for set_public) runs
inside concurrency.atomic: the customer updates and their ledger rows commit
together or not at all. Audit entries are returned to the caller and emitted
after the commit.

LEDGER:
One CustomerAllocation row per customer whose holder actually changed.
Moving a customer to the holder it already has writes nothing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

from flask import current_app
from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError

from ..errors import (
    BusinessRuleError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from ..extensions import db
from ..models import CallLog, Customer, User
from ..permissions import ADMIN_ROLES, SALES_ROLES
from ..validation import PHONE_PATTERN, normalize_phone
from crm.time_utils import utcnow
from . import ledger_service
from .audit_service import AuditEntry
from .concurrency import atomic, chunked, lock_for_update


REASON_BULK_UPLOAD = "엑셀 업로드를 통한 일괄 배분"
REASON_PUBLIC = "공개DB로 전환"
REASON_CLAIM = "공개DB에서 클레임"


def _require_admin(actor: User, message: str) -> None:
    if actor.role_enum not in ADMIN_ROLES:
        raise PermissionDeniedError(message)


def _live_customers(ids: Iterable[int]):
    return db.session.query(Customer).filter(
        Customer.id.in_(list(ids)),
        Customer.is_deleted.is_(False),
    )


def _assign(customer: Customer, user_id: int, now) -> None:
    customer.assigned_user_id = user_id
    customer.assigned_at = now
    customer.is_public = False
    customer.public_at = None
    customer.public_by_id = None


def _entity_ref(ids: list[int]) -> str:
    if len(ids) <= 10:
        return ",".join(str(i) for i in ids)
    return f"{len(ids)}건 일괄처리"


# ---------------------------------------------------------------------------
# Direct allocation
# ---------------------------------------------------------------------------

def allocate(
    customer_ids: list[int],
    to_user_id: int,
    actor: User,
    *,
    reason: str | None = None,
    assigned_site: str | None = None,
) -> tuple[dict, AuditEntry]:
    """
    Move customers to one staff member, all or nothing.

    Fails when the target is missing or inactive, or when none of the ids
    match a live customer.
    """
    def _op():
        target = db.session.get(User, to_user_id)
        if not target:
            raise NotFoundError("대상 사용자를 찾을 수 없습니다.")
        if not target.is_active:
            raise BusinessRuleError("비활성화된 사용자에게는 배분할 수 없습니다.")

        customers = lock_for_update(_live_customers(customer_ids)).all()
        if not customers:
            raise NotFoundError("배분할 고객을 찾을 수 없습니다.")

        now = utcnow()
        moved = []
        for customer in customers:
            if assigned_site is not None:
                customer.assigned_site = assigned_site
            previous = customer.assigned_user_id
            if previous == target.id and not customer.is_public:
                continue
            _assign(customer, target.id, now)
            ledger_service.record_transition(
                customer_id=customer.id,
                from_user_id=previous,
                to_user_id=target.id,
                allocated_by_id=actor.id,
                reason=reason,
            )
            moved.append(customer.id)
        return target, len(customers), moved

    target, matched, moved = atomic(_op)

    data = {
        "allocated": len(moved),
        "matched": matched,
        "toUser": target.to_summary(),
    }
    entry = AuditEntry(
        actor_id=actor.id,
        action="ALLOCATE_CUSTOMERS",
        entity="Customer",
        entity_id=_entity_ref(moved),
        changes={
            "customerCount": len(moved),
            "toUserId": target.id,
            "reason": reason,
            "assignedSite": assigned_site,
        },
    )
    return data, entry


# ---------------------------------------------------------------------------
# Spreadsheet import
# ---------------------------------------------------------------------------

@dataclass
class BulkResult:
    created: int = 0
    updated: int = 0
    allocated: int = 0
    errors: list[dict] = field(default_factory=list)

    def fail(self, row: int, message: str) -> None:
        self.errors.append({"row": row, "error": message})

    def to_dict(self) -> dict:
        return {
            "created": self.created,
            "updated": self.updated,
            "allocated": self.allocated,
            "errors": self.errors,
            "message": f"{self.created}명 생성, {self.updated}명 업데이트, {self.allocated}명 배분 완료",
        }


def _cell(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _resolve_assignee(identifier: str) -> User | None:
    """Email first, then username. Inactive accounts do not resolve."""
    user = db.session.query(User).filter(User.email == identifier).first()
    if user is None:
        user = db.session.query(User).filter(User.username == identifier).first()
    if user is None or not user.is_active:
        return None
    return user


def _apply_row(name, phone, email, address, assignee, actor: User) -> tuple[bool, bool, bool]:
    """
    Create or update one customer and optionally hand it to an assignee.

    Returns (created, allocated, assignee_missing).
    """
    customer = (
        db.session.query(Customer)
        .filter(Customer.phone == phone, Customer.is_deleted.is_(False))
        .order_by(Customer.id)
        .first()
    )
    created = customer is None
    if created:
        customer = Customer(
            name=name,
            phone=phone,
            email=email,
            address=address,
            created_by_id=actor.id,
            created_at=utcnow(),
        )
        db.session.add(customer)
        db.session.flush()
    else:
        customer.name = name or customer.name
        customer.email = email or customer.email
        customer.address = address or customer.address

    if not assignee:
        return created, False, False

    target = _resolve_assignee(assignee)
    if target is None:
        return created, False, True

    previous = customer.assigned_user_id
    if previous == target.id and not customer.is_public:
        return created, False, False

    _assign(customer, target.id, utcnow())
    ledger_service.record_transition(
        customer_id=customer.id,
        from_user_id=previous,
        to_user_id=target.id,
        allocated_by_id=actor.id,
        reason=REASON_BULK_UPLOAD,
    )
    return created, True, False


def bulk_allocate_rows(rows: list[dict], actor: User) -> tuple[dict, AuditEntry]:
    """
    Import rows of {name, phone, email?, address?, assignee?, row?}.

    Each row commits on its own; a bad row is reported and the rest go on.
    `row` is the spreadsheet row number; when absent, index + 2 (header is
    row 1) is used.
    """
    max_rows = int(current_app.config.get("BULK_UPLOAD_MAX_ROWS", 500))
    rows = [r for r in rows if any(_cell(v) for k, v in r.items() if k != "row")]
    if not rows:
        raise BusinessRuleError("등록할 데이터가 없습니다.")
    if len(rows) > max_rows:
        raise BusinessRuleError(f"한 번에 최대 {max_rows}개까지만 등록할 수 있습니다.")

    result = BulkResult()
    for index, raw in enumerate(rows):
        row_number = raw.get("row") or index + 2
        name = _cell(raw.get("name"))
        phone_raw = _cell(raw.get("phone"))

        if not name or not phone_raw:
            result.fail(row_number, "이름과 전화번호는 필수입니다.")
            continue

        phone = normalize_phone(phone_raw)
        if not PHONE_PATTERN.match(phone):
            result.fail(row_number, "올바른 전화번호 형식이 아닙니다.")
            continue

        email = _cell(raw.get("email"))
        address = _cell(raw.get("address"))
        assignee = _cell(raw.get("assignee"))

        try:
            created, allocated, assignee_missing = atomic(
                lambda: _apply_row(name, phone, email, address, assignee, actor)
            )
        except SQLAlchemyError:
            current_app.logger.warning("Bulk allocation row %s failed", row_number, exc_info=True)
            result.fail(row_number, "처리 중 오류가 발생했습니다.")
            continue

        if created:
            result.created += 1
        else:
            result.updated += 1
        if allocated:
            result.allocated += 1
        if assignee_missing:
            result.fail(row_number, f"담당자 이메일({assignee})을 찾을 수 없습니다.")

    current_app.logger.info(
        "Bulk allocation by user %s: %s created, %s updated, %s allocated, %s errors",
        actor.id, result.created, result.updated, result.allocated, len(result.errors),
    )

    entry = AuditEntry(
        actor_id=actor.id,
        action="BULK_ALLOCATE_CUSTOMERS",
        entity="Customer",
        changes={
            "totalRows": len(rows),
            "created": result.created,
            "updated": result.updated,
            "allocated": result.allocated,
            "errors": len(result.errors),
        },
    )
    return result.to_dict(), entry


# ---------------------------------------------------------------------------
# Reclaim
# ---------------------------------------------------------------------------

def reclaim(
    from_user_id: int,
    actor: User,
    *,
    customer_ids: list[int] | None = None,
    reclaim_all: bool = False,
) -> tuple[dict, AuditEntry]:
    """
    Return a staff member's customers to the admin pool.

    With reclaim_all every customer they hold is taken, otherwise only the
    given ids. An empty match set is an error, never a silent zero.
    """
    _require_admin(actor, "관리자 권한이 필요합니다.")
    if not reclaim_all and not customer_ids:
        raise ValidationError(
            "회수할 고객을 선택해주세요.",
            details={"customerIds": "customerIds is required unless reclaimAll is true"},
        )

    source = db.session.get(User, from_user_id)
    if not source:
        raise NotFoundError("대상 사용자를 찾을 수 없습니다.")

    mode = "전체 회수" if reclaim_all else "선택 회수"
    reason = f"관리자({actor.name})가 DB 회수 - {mode}"

    def _op():
        query = db.session.query(Customer).filter(
            Customer.assigned_user_id == from_user_id,
            Customer.is_deleted.is_(False),
        )
        if not reclaim_all:
            query = query.filter(Customer.id.in_(customer_ids))
        customers = lock_for_update(query.order_by(Customer.id)).all()
        if not customers:
            raise BusinessRuleError("회수할 고객이 없습니다.")

        summaries = [c.to_summary() for c in customers]
        ids = [c.id for c in customers]
        for batch in chunked(ids, 500):
            count = (
                db.session.query(Customer)
                .filter(Customer.id.in_(batch), Customer.assigned_user_id == from_user_id)
                .update(
                    {
                        Customer.assigned_user_id: None,
                        Customer.assigned_at: None,
                        Customer.version_id: Customer.version_id + 1,
                    },
                    synchronize_session=False,
                )
            )
            if count != len(batch):
                raise ConflictError("다른 작업에 의해 고객 담당자가 변경되었습니다. 다시 시도해주세요.")

        ledger_service.record_transitions(
            [(customer_id, from_user_id) for customer_id in ids],
            to_user_id=None,
            allocated_by_id=actor.id,
            reason=reason,
        )
        return summaries

    summaries = atomic(_op)

    data = {
        "reclaimedCount": len(summaries),
        "fromUser": source.name,
        "customers": summaries,
    }
    entry = AuditEntry(
        actor_id=actor.id,
        action="RECLAIM",
        entity="Customer",
        entity_id=from_user_id,
        changes={
            "fromUserId": from_user_id,
            "fromUserName": source.name,
            "customerCount": len(summaries),
            "reclaimAll": reclaim_all,
            "customerIds": [s["id"] for s in summaries],
        },
    )
    return data, entry


# ---------------------------------------------------------------------------
# Public pool
# ---------------------------------------------------------------------------

def _publicize_batch(batch: list[int], actor: User) -> int:
    customers = lock_for_update(_live_customers(batch).order_by(Customer.id)).all()
    now = utcnow()
    changed = 0
    for customer in customers:
        if customer.is_public:
            continue
        if customer.assigned_user_id not in (None, actor.id):
            continue
        previous = customer.assigned_user_id
        customer.assigned_user_id = None
        customer.assigned_at = None
        customer.is_public = True
        customer.public_at = now
        customer.public_by_id = actor.id
        ledger_service.record_transition(
            customer_id=customer.id,
            from_user_id=previous,
            to_user_id=None,
            allocated_by_id=actor.id,
            reason=REASON_PUBLIC,
        )
        changed += 1
    return changed


def _unpublicize_batch(batch: list[int]) -> int:
    customers = lock_for_update(
        _live_customers(batch).filter(Customer.is_public.is_(True))
    ).all()
    for customer in customers:
        customer.is_public = False
        customer.public_at = None
        customer.public_by_id = None
    return len(customers)


def set_public(customer_ids: list[int], is_public: bool, actor: User) -> tuple[dict, AuditEntry]:
    """
    Release customers to the public pool, or withdraw them.

    Only customers the actor holds, or unassigned ones, may be released.
    Work is split into ALLOCATION_BATCH_SIZE sub-transactions, each atomic;
    a failure aborts the current batch and leaves earlier ones committed.
    Ledger rows are written for the release direction only.
    """
    _require_admin(actor, "관리자만 공개DB 전환이 가능합니다.")

    if is_public:
        peer_owned = (
            _live_customers(customer_ids)
            .filter(
                Customer.assigned_user_id.isnot(None),
                Customer.assigned_user_id != actor.id,
            )
            .count()
        )
        if peer_owned:
            raise PermissionDeniedError(
                "본인에게 배분된 고객만 공개DB로 전환할 수 있습니다. "
                f"다른 직원 소유 고객 {peer_owned}명이 포함되어 있습니다."
            )

    batch_size = int(current_app.config.get("ALLOCATION_BATCH_SIZE", 500))
    count = 0
    for batch in chunked(list(customer_ids), batch_size):
        if is_public:
            count += atomic(lambda: _publicize_batch(batch, actor))
        else:
            count += atomic(lambda: _unpublicize_batch(batch))

    if is_public:
        message = f"{count:,}명의 고객을 공개DB로 전환했습니다."
    else:
        message = f"{count:,}명의 고객을 공개DB에서 해제했습니다."

    entry = AuditEntry(
        actor_id=actor.id,
        action="MARK_PUBLIC" if is_public else "UNMARK_PUBLIC",
        entity="Customer",
        entity_id=_entity_ref(list(customer_ids)),
        changes={"isPublic": is_public, "count": count},
    )
    return {"count": count, "message": message}, entry


def claim(customer_id: int, actor: User) -> tuple[Customer, AuditEntry]:
    """
    Take a public customer.

    The caller must have logged at least one call on the customer, and one
    of their calls must be a real contact (outcome other than NO_ANSWER).
    The public flag is re-checked by the UPDATE itself: of two racing
    claims exactly one matches a row; the other gets ConflictError.
    """
    def _op():
        customer = (
            db.session.query(Customer)
            .filter(Customer.id == customer_id, Customer.is_deleted.is_(False))
            .first()
        )
        if not customer:
            raise NotFoundError("고객을 찾을 수 없습니다.")
        if not customer.is_public:
            raise ConflictError("이미 다른 직원이 가져간 고객입니다.")

        logs = (
            db.session.query(CallLog)
            .filter(CallLog.customer_id == customer_id, CallLog.user_id == actor.id)
            .all()
        )
        if not logs:
            raise BusinessRuleError("통화 기록이 없습니다. 먼저 통화를 진행해주세요.")
        if not any(log.is_real_contact for log in logs):
            raise BusinessRuleError("부재 기록만 있습니다. 정상 통화 후 가져올 수 있습니다.")

        now = utcnow()
        claimed = (
            db.session.query(Customer)
            .filter(
                Customer.id == customer_id,
                Customer.is_public.is_(True),
                Customer.is_deleted.is_(False),
            )
            .update(
                {
                    Customer.is_public: False,
                    Customer.assigned_user_id: actor.id,
                    Customer.assigned_at: now,
                    Customer.public_at: None,
                    Customer.public_by_id: None,
                    Customer.version_id: Customer.version_id + 1,
                },
                synchronize_session=False,
            )
        )
        if claimed != 1:
            raise ConflictError("이미 다른 직원이 가져간 고객입니다.")

        ledger_service.record_transition(
            customer_id=customer_id,
            from_user_id=None,
            to_user_id=actor.id,
            allocated_by_id=actor.id,
            reason=REASON_CLAIM,
        )
        return customer.name

    customer_name = atomic(_op)

    customer = db.session.get(Customer, customer_id)

    entry = AuditEntry(
        actor_id=actor.id,
        action="CLAIM_PUBLIC",
        entity="Customer",
        entity_id=customer_id,
        changes={"claimedBy": actor.id, "customerName": customer_name},
    )
    return customer, entry


def unallocated_query(site: str | None = None):
    """
    Admin-pool listing: live, non-public customers with no holder or a
    holder outside the sales roles.
    """
    sales_holders = select(User.id).where(
        User.role.in_([r.value for r in SALES_ROLES])
    )
    query = db.session.query(Customer).filter(
        Customer.is_deleted.is_(False),
        Customer.is_public.is_(False),
        or_(
            Customer.assigned_user_id.is_(None),
            Customer.assigned_user_id.notin_(sales_holders),
        ),
    )
    if site:
        query = query.filter(Customer.assigned_site == site)
    return query
