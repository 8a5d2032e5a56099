# Overview: Daily Quota Guard; per-user customer registration limits keyed by business date.

"""
Daily Quota Guard

limit = base + approvals(user, day) * base

count is the number of customers created on `day` (business calendar) that
the user currently holds. Soft-deleted customers still count. A customer
that leaves the user (reclaim, mark-public, transfer) stops counting, so
remaining can go back up that way as well as through an approval, which
raises the limit. Approvals are append-only; there is no revoke.

ADMIN and CEO are exempt.

`day` is always supplied by the caller from the BusinessClock.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from flask import current_app

from ..errors import NotFoundError, QuotaExceededError
from ..extensions import db
from ..models import Customer, DailyLimitApproval, User
from ..permissions import ADMIN_ROLES
from crm.time_utils import business_clock, utcnow
from .audit_service import AuditEntry


@dataclass(frozen=True)
class QuotaStatus:
    user_id: int
    day: date
    is_exempt: bool
    today_count: int
    base_limit: int
    approval_count: int

    @property
    def current_limit(self) -> int:
        return self.base_limit + self.approval_count * self.base_limit

    @property
    def remaining(self) -> int:
        return max(0, self.current_limit - self.today_count)

    @property
    def can_register(self) -> bool:
        return self.is_exempt or self.today_count < self.current_limit

    def to_dict(self) -> dict:
        return {
            "canRegister": self.can_register,
            "isAdmin": self.is_exempt,
            "todayCount": self.today_count,
            "baseLimit": self.base_limit,
            "approvalCount": self.approval_count,
            "currentLimit": self.current_limit,
            "remaining": self.remaining,
            "needsApproval": not self.can_register,
        }


def base_limit() -> int:
    return int(current_app.config.get("DAILY_CUSTOMER_LIMIT", 50))


def created_count(user_id: int, day: date) -> int:
    start, end = business_clock().day_bounds(day)
    return (
        db.session.query(Customer)
        .filter(
            Customer.assigned_user_id == user_id,
            Customer.created_at >= start,
            Customer.created_at < end,
        )
        .count()
    )


def approval_count(user_id: int, day: date) -> int:
    return (
        db.session.query(DailyLimitApproval)
        .filter(DailyLimitApproval.user_id == user_id, DailyLimitApproval.date == day)
        .count()
    )


def status(user: User, day: date) -> QuotaStatus:
    if user.role_enum in ADMIN_ROLES:
        return QuotaStatus(
            user_id=user.id,
            day=day,
            is_exempt=True,
            today_count=0,
            base_limit=base_limit(),
            approval_count=0,
        )
    return QuotaStatus(
        user_id=user.id,
        day=day,
        is_exempt=False,
        today_count=created_count(user.id, day),
        base_limit=base_limit(),
        approval_count=approval_count(user.id, day),
    )


def _exceeded(current: QuotaStatus) -> QuotaExceededError:
    return QuotaExceededError(
        f"일일 등록 제한({current.current_limit}건)에 도달했습니다. 관리자 승인이 필요합니다.",
        current_limit=current.current_limit,
        remaining=current.remaining,
        today_count=min(current.today_count, current.current_limit),
        approval_count=current.approval_count,
    )


def ensure_can_create(user: User, day: date, *, adding: int = 1) -> QuotaStatus:
    """Raise QuotaExceededError unless `adding` more customers fit today."""
    current = status(user, day)
    if current.is_exempt:
        return current
    if current.today_count + adding > current.current_limit:
        raise _exceeded(current)
    return current


def ensure_within_limit(user: User, day: date) -> QuotaStatus:
    """
    Re-check after the new rows are flushed, so the count already includes
    them. Two registrations that both passed ensure_can_create cannot both
    commit: the later one sees the earlier one's row here and rolls back.
    """
    current = status(user, day)
    if not current.is_exempt and current.today_count > current.current_limit:
        raise _exceeded(current)
    return current


def approve(user_id: int, admin: User, day: date) -> tuple[dict, AuditEntry]:
    """Append one approval for (user, day). Caller commits."""
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError("직원을 찾을 수 없습니다.")

    approval = DailyLimitApproval(
        user_id=user.id,
        date=day,
        approved_by_id=admin.id,
        created_at=utcnow(),
    )
    db.session.add(approval)
    db.session.flush()

    count = approval_count(user.id, day)
    new_limit = base_limit() + count * base_limit()

    data = {
        "approval": approval.to_dict(),
        "user": user.to_summary(),
        "approvalCount": count,
        "newLimit": new_limit,
    }
    entry = AuditEntry(
        actor_id=admin.id,
        action="APPROVE_DAILY_LIMIT",
        entity="User",
        entity_id=user.id,
        changes={"date": day.isoformat(), "approvalCount": count, "newLimit": new_limit},
    )
    return data, entry


def list_statuses(day: date) -> list[dict]:
    """Every active non-admin account with its status for `day`."""
    users = (
        db.session.query(User)
        .filter(
            User.is_active.is_(True),
            User.role.notin_([r.value for r in ADMIN_ROLES]),
        )
        .order_by(User.name)
        .all()
    )
    out = []
    for user in users:
        current = status(user, day)
        item = user.to_summary()
        item.update(current.to_dict())
        item["exceeded"] = not current.can_register
        out.append(item)
    return out
