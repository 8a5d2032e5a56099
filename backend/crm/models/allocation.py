from __future__ import annotations

from ..extensions import db
from crm.time_utils import to_utc_z


TRANSFER_STATUS_PENDING = "PENDING"
TRANSFER_STATUS_APPROVED = "APPROVED"
TRANSFER_STATUS_REJECTED = "REJECTED"
TRANSFER_STATUSES = (TRANSFER_STATUS_PENDING, TRANSFER_STATUS_APPROVED, TRANSFER_STATUS_REJECTED)


class CustomerAllocation(db.Model):
    """
    One ownership transition of one customer.

    from_user_id NULL = came from the admin pool or the public pool.
    to_user_id NULL = returned to the admin pool or released to the public pool.

    IMMUTABLE: Append-only. The only writes after insert are the NULL-outs
    performed when a referenced account is hard-deleted.
    """
    __tablename__ = "customer_allocations"
    __table_args__ = (
        db.Index("ix_customer_allocations_customer_created", "customer_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    from_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    to_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    allocated_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    reason = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    customer = db.relationship("Customer", backref=db.backref("allocations", lazy=True))
    from_user = db.relationship("User", foreign_keys=[from_user_id])
    to_user = db.relationship("User", foreign_keys=[to_user_id])
    allocated_by = db.relationship("User", foreign_keys=[allocated_by_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "from_user_id": self.from_user_id,
            "to_user_id": self.to_user_id,
            "allocated_by_id": self.allocated_by_id,
            "reason": self.reason,
            "created_at": to_utc_z(self.created_at),
        }


class TransferRequest(db.Model):
    """
    Approvable change of holder between two staff members.

    LIFECYCLE:
    1. PENDING: filed by a staff member who does not hold the customer
    2. APPROVED: holder changed to to_user_id (terminal)
    3. REJECTED: no ownership change, rejected_reason set (terminal)

    At most one PENDING request per customer, enforced by a partial unique
    index so two concurrent requests cannot both be inserted.
    """
    __tablename__ = "transfer_requests"
    __table_args__ = (
        db.Index(
            "uq_transfer_requests_one_pending",
            "customer_id",
            unique=True,
            sqlite_where=db.text("status = 'PENDING'"),
            postgresql_where=db.text("status = 'PENDING'"),
        ),
        db.Index("ix_transfer_requests_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    from_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    to_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    requested_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    reason = db.Column(db.Text, nullable=False)

    status = db.Column(db.String(16), nullable=False, default=TRANSFER_STATUS_PENDING)

    approved_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("transfer_requests", lazy=True))
    from_user = db.relationship("User", foreign_keys=[from_user_id])
    to_user = db.relationship("User", foreign_keys=[to_user_id])
    requested_by = db.relationship("User", foreign_keys=[requested_by_id])
    approved_by = db.relationship("User", foreign_keys=[approved_by_id])
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "customer": self.customer.to_summary() if self.customer else None,
            "from_user_id": self.from_user_id,
            "from_user": self.from_user.to_summary() if self.from_user else None,
            "to_user_id": self.to_user_id,
            "to_user": self.to_user.to_summary() if self.to_user else None,
            "requested_by_id": self.requested_by_id,
            "requested_by": self.requested_by.to_summary() if self.requested_by else None,
            "reason": self.reason,
            "status": self.status,
            "approved_by_id": self.approved_by_id,
            "approved_by": self.approved_by.to_summary() if self.approved_by else None,
            "approved_at": to_utc_z(self.approved_at),
            "rejected_reason": self.rejected_reason,
            "created_at": to_utc_z(self.created_at),
        }


class DailyLimitApproval(db.Model):
    """
    One administrator approval raising a user's quota for one business date.

    The number of rows for (user_id, date) multiplies the base limit.
    Never deleted: an approval cannot be revoked.
    """
    __tablename__ = "daily_limit_approvals"
    __table_args__ = (
        db.Index("ix_daily_limit_approvals_user_date", "user_id", "date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    # NULL once the approved account is permanently deleted
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    date = db.Column(db.Date, nullable=False)
    approved_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    user = db.relationship("User", foreign_keys=[user_id])
    approved_by = db.relationship("User", foreign_keys=[approved_by_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "date": self.date.isoformat() if self.date else None,
            "approved_by_id": self.approved_by_id,
            "created_at": to_utc_z(self.created_at),
        }
