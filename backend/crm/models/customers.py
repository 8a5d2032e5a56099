from __future__ import annotations

from dataclasses import dataclass

from ..extensions import db
from crm.time_utils import to_utc_z


@dataclass(frozen=True)
class Unassigned:
    """Held by nobody: the customer sits in the admin pool."""
    kind = "UNASSIGNED"


@dataclass(frozen=True)
class PublicPool:
    """Released to the public pool; any staff member may claim it."""
    kind = "PUBLIC"


@dataclass(frozen=True)
class HeldBy:
    user_id: int
    kind = "HELD"


Holder = Unassigned | PublicPool | HeldBy


class Customer(db.Model):
    """
    Prospect/lead record.

    OWNERSHIP: a live customer is in exactly one of three states, see
    Customer.holder. is_public=True implies assigned_user_id IS NULL; the
    check constraint makes the database reject anything else.

    Phone numbers are stored digits-only. Duplicates among live customers
    are reported as warnings when they appear, never merged.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.CheckConstraint(
            "is_public = false OR assigned_user_id IS NULL",
            name="ck_customers_public_unassigned",
        ),
        db.Index("ix_customers_phone_deleted", "phone", "is_deleted"),
        db.Index("ix_customers_holder_created", "assigned_user_id", "created_at"),
        db.Index("ix_customers_public", "is_public", "is_deleted"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(128), nullable=False)
    phone = db.Column(db.String(32), nullable=False, index=True)
    email = db.Column(db.String(255), nullable=True)
    address = db.Column(db.String(255), nullable=True)
    memo = db.Column(db.Text, nullable=True)

    # Classification
    grade = db.Column(db.String(1), nullable=False, default="C")  # A, B, C
    source = db.Column(db.String(16), nullable=True)  # AD, TM, FIELD, REFERRAL
    assigned_site = db.Column(db.String(128), nullable=True, index=True)

    # Lifecycle
    is_deleted = db.Column(db.Boolean, nullable=False, default=False, index=True)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Ownership
    assigned_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    assigned_at = db.Column(db.DateTime(timezone=True), nullable=True)
    is_public = db.Column(db.Boolean, nullable=False, default=False)
    public_at = db.Column(db.DateTime(timezone=True), nullable=True)
    public_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    assigned_user = db.relationship("User", foreign_keys=[assigned_user_id])
    public_by = db.relationship("User", foreign_keys=[public_by_id])
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def holder(self) -> Holder:
        if self.is_public:
            return PublicPool()
        if self.assigned_user_id is None:
            return Unassigned()
        return HeldBy(self.assigned_user_id)

    def to_summary(self) -> dict:
        return {"id": self.id, "name": self.name, "phone": self.phone}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "address": self.address,
            "memo": self.memo,
            "grade": self.grade,
            "source": self.source,
            "assigned_site": self.assigned_site,
            "holder": self.holder.kind,
            "assigned_user_id": self.assigned_user_id,
            "assigned_user": self.assigned_user.to_summary() if self.assigned_user else None,
            "assigned_at": to_utc_z(self.assigned_at),
            "is_public": self.is_public,
            "public_at": to_utc_z(self.public_at),
            "public_by_id": self.public_by_id,
            "is_deleted": self.is_deleted,
            "created_by_id": self.created_by_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
