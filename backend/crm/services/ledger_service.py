# Overview: Service-layer operations for the ownership ledger; encapsulates business logic and database work.

"""
Ownership Ledger Invariants (authoritative)

- Append-only: one CustomerAllocation row per customer whose holder changed.
- Rows are added inside the same transaction as the holder change they record.
- from_user_id / to_user_id NULL means the admin pool or the public pool.
- No updates or deletes, except NULL-outs when an account is hard-deleted.
"""

from __future__ import annotations

from typing import Iterable

from ..extensions import db
from ..models import CustomerAllocation, User
from crm.time_utils import utcnow

ADMIN_POOL_LABEL = "관리자 DB"


def record_transition(
    *,
    customer_id: int,
    from_user_id: int | None,
    to_user_id: int | None,
    allocated_by_id: int | None,
    reason: str | None = None,
) -> CustomerAllocation:
    """Add one ledger row to the current session. Does not commit."""
    row = CustomerAllocation(
        customer_id=customer_id,
        from_user_id=from_user_id,
        to_user_id=to_user_id,
        allocated_by_id=allocated_by_id,
        reason=reason,
        created_at=utcnow(),
    )
    db.session.add(row)
    return row


def record_transitions(
    transitions: Iterable[tuple[int, int | None]],
    *,
    to_user_id: int | None,
    allocated_by_id: int | None,
    reason: str | None = None,
) -> int:
    """
    Bulk form of record_transition for (customer_id, previous_holder) pairs
    that all moved to the same destination. Returns the number of rows added.
    """
    rows = [
        CustomerAllocation(
            customer_id=customer_id,
            from_user_id=from_user_id,
            to_user_id=to_user_id,
            allocated_by_id=allocated_by_id,
            reason=reason,
            created_at=utcnow(),
        )
        for customer_id, from_user_id in transitions
    ]
    db.session.add_all(rows)
    return len(rows)


def _label(user: User | None) -> str:
    return user.name if user else ADMIN_POOL_LABEL


def history(customer_id: int) -> list[dict]:
    """Ledger rows for one customer, newest first, with display labels."""
    rows = (
        db.session.query(CustomerAllocation)
        .filter(CustomerAllocation.customer_id == customer_id)
        .order_by(CustomerAllocation.created_at.desc(), CustomerAllocation.id.desc())
        .all()
    )
    out = []
    for row in rows:
        item = row.to_dict()
        item["from_user"] = _label(row.from_user)
        item["to_user"] = _label(row.to_user)
        item["allocated_by"] = row.allocated_by.name if row.allocated_by else None
        out.append(item)
    return out

