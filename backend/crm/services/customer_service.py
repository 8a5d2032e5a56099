# Overview: Service-layer operations for customers; intake, scoped listing and soft deletes.

from __future__ import annotations

from datetime import date

from flask import current_app
from sqlalchemy import or_

from ..errors import BusinessRuleError, NotFoundError
from ..extensions import db
from ..models import Customer, User
from ..permissions import Resource, Action
from crm.time_utils import utcnow
from . import ledger_service, permission_service, quota_service, scope_service
from .audit_service import AuditEntry
from .concurrency import atomic, chunked, lock_for_update


REASON_NEW = "신규 등록"


def placeholder_name(phone: str) -> str:
    return f"고객_{phone[-4:]}"


def find_duplicates(phone: str, *, exclude_id: int | None = None) -> list[Customer]:
    query = db.session.query(Customer).filter(
        Customer.phone == phone,
        Customer.is_deleted.is_(False),
    )
    if exclude_id is not None:
        query = query.filter(Customer.id != exclude_id)
    return query.order_by(Customer.id).all()


def _duplicate_summary(customer: Customer) -> dict:
    item = customer.to_summary()
    item["assigned_user"] = customer.assigned_user.name if customer.assigned_user else None
    item["is_public"] = customer.is_public
    return item


def create_customer(
    actor: User,
    day: date,
    *,
    phone: str,
    name: str | None = None,
    email: str | None = None,
    address: str | None = None,
    memo: str | None = None,
    grade: str | None = None,
    source: str | None = None,
    assigned_site: str | None = None,
    assigned_user_id: int | None = None,
) -> tuple[Customer, list[dict], AuditEntry]:
    """
    Register a customer held by the actor, or by assigned_user_id when the
    actor may allocate.

    The holder's daily quota for `day` is checked inside the transaction.
    Live customers with the same phone are returned as warnings; they are
    never merged.
    """
    if assigned_user_id is not None and assigned_user_id != actor.id:
        permission_service.require(actor.role, Resource.CUSTOMERS, Action.ALLOCATE)

    def _op():
        holder = actor
        if assigned_user_id is not None and assigned_user_id != actor.id:
            holder = db.session.get(User, assigned_user_id)
            if not holder:
                raise NotFoundError("담당자를 찾을 수 없습니다.")
            if not holder.is_active:
                raise BusinessRuleError("비활성화된 사용자에게는 배분할 수 없습니다.")

        # Serializes registrations for one holder where the backend honors FOR UPDATE
        holder = lock_for_update(db.session.query(User).filter(User.id == holder.id)).one()
        quota_service.ensure_can_create(holder, day)

        duplicates = [_duplicate_summary(c) for c in find_duplicates(phone)]

        now = utcnow()
        customer = Customer(
            name=name or placeholder_name(phone),
            phone=phone,
            email=email,
            address=address,
            memo=memo,
            grade=grade or "C",
            source=source,
            assigned_site=assigned_site,
            assigned_user_id=holder.id,
            assigned_at=now,
            created_by_id=actor.id,
            created_at=now,
        )
        db.session.add(customer)
        db.session.flush()
        quota_service.ensure_within_limit(holder, day)

        ledger_service.record_transition(
            customer_id=customer.id,
            from_user_id=None,
            to_user_id=holder.id,
            allocated_by_id=actor.id,
            reason=REASON_NEW,
        )
        return customer.id, duplicates

    customer_id, duplicates = atomic(_op)
    customer = db.session.get(Customer, customer_id)

    entry = AuditEntry(
        actor_id=actor.id,
        action="CREATE",
        entity="Customer",
        entity_id=customer.id,
        changes={
            "name": customer.name,
            "phone": customer.phone,
            "assignedUserId": customer.assigned_user_id,
            "duplicates": [d["id"] for d in duplicates],
        },
    )
    return customer, duplicates, entry


def list_customers(
    actor: User,
    *,
    search: str | None = None,
    assigned_user_id: int | None = None,
    is_public: bool | None = None,
    site: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[Customer], int]:
    query = db.session.query(Customer).filter(Customer.is_deleted.is_(False))

    # The public pool is visible to everyone; otherwise the caller's scope applies
    if is_public:
        query = query.filter(Customer.is_public.is_(True))
    else:
        query = query.filter(scope_service.customer_scope(actor))
        if is_public is False:
            query = query.filter(Customer.is_public.is_(False))

    if search:
        pattern = f"%{search}%"
        digits = "".join(ch for ch in search if ch.isdigit())
        conditions = [Customer.name.ilike(pattern)]
        if digits:
            conditions.append(Customer.phone.like(f"%{digits}%"))
        query = query.filter(or_(*conditions))
    if assigned_user_id is not None:
        query = query.filter(Customer.assigned_user_id == assigned_user_id)
    if site:
        query = query.filter(Customer.assigned_site == site)

    total = query.count()
    rows = (
        query.order_by(Customer.created_at.desc(), Customer.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total


def get_customer(customer_id: int, actor: User) -> Customer:
    """Out-of-scope customers are reported as missing."""
    customer = (
        db.session.query(Customer)
        .filter(Customer.id == customer_id, Customer.is_deleted.is_(False))
        .first()
    )
    if not customer or not scope_service.can_view_customer(actor, customer):
        raise NotFoundError("고객을 찾을 수 없습니다.")
    return customer


def check_duplicate(phone: str) -> list[dict]:
    return [_duplicate_summary(c) for c in find_duplicates(phone)]


def soft_delete(customer_id: int, actor: User) -> tuple[Customer, AuditEntry]:
    def _op():
        customer = get_customer(customer_id, actor)
        customer.is_deleted = True
        customer.deleted_at = utcnow()
        return customer.id

    atomic(_op)
    customer = db.session.get(Customer, customer_id)
    entry = AuditEntry(
        actor_id=actor.id,
        action="DELETE",
        entity="Customer",
        entity_id=customer_id,
        changes={"name": customer.name, "phone": customer.phone},
    )
    return customer, entry


def _soft_delete_batch(batch, now) -> int:
    return (
        db.session.query(Customer)
        .filter(Customer.id.in_(list(batch)), Customer.is_deleted.is_(False))
        .update(
            {
                Customer.is_deleted: True,
                Customer.deleted_at: now,
                Customer.version_id: Customer.version_id + 1,
            },
            synchronize_session=False,
        )
    )


def bulk_soft_delete(customer_ids: list[int], actor: User) -> tuple[dict, AuditEntry]:
    """
    Soft-delete many customers at once. Admin only; the route enforces the role.

    Customers held by another user block the whole request. Work runs in
    ALLOCATION_BATCH_SIZE sub-transactions; already-deleted rows are skipped
    and not counted.
    """
    ids = list(dict.fromkeys(customer_ids))
    held_by_others = (
        db.session.query(Customer)
        .filter(
            Customer.id.in_(ids),
            Customer.is_deleted.is_(False),
            Customer.assigned_user_id.isnot(None),
            Customer.assigned_user_id != actor.id,
        )
        .count()
    )
    if held_by_others:
        raise BusinessRuleError(
            "본인에게 배분된 고객만 삭제할 수 있습니다. "
            f"다른 직원 소유 고객 {held_by_others}명이 포함되어 있습니다.",
            status_code=403,
        )

    batch_size = int(current_app.config.get("ALLOCATION_BATCH_SIZE", 500))
    now = utcnow()
    count = 0
    for batch in chunked(ids, batch_size):
        count += atomic(lambda: _soft_delete_batch(batch, now))

    entry = AuditEntry(
        actor_id=actor.id,
        action="BULK_DELETE",
        entity="Customer",
        entity_id=",".join(str(i) for i in ids) if len(ids) <= 10 else f"{len(ids)}건 일괄삭제",
        changes={"count": count},
    )
    return {"count": count, "message": f"{count:,}명의 고객을 삭제했습니다."}, entry
