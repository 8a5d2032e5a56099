from __future__ import annotations

from ..extensions import db
from crm.time_utils import to_utc_z


CALL_OUTCOME_CONNECTED = "CONNECTED"
CALL_OUTCOME_NO_ANSWER = "NO_ANSWER"
CALL_OUTCOME_CALLBACK = "CALLBACK"
CALL_OUTCOME_REJECTED = "REJECTED"
CALL_OUTCOME_OTHER = "OTHER"
CALL_OUTCOMES = (
    CALL_OUTCOME_CONNECTED,
    CALL_OUTCOME_NO_ANSWER,
    CALL_OUTCOME_CALLBACK,
    CALL_OUTCOME_REJECTED,
    CALL_OUTCOME_OTHER,
)


class CallLog(db.Model):
    """
    Contact attempt against a customer.

    outcome is captured when the log is written; claiming a public customer
    requires at least one log whose outcome is not NO_ANSWER.
    """
    __tablename__ = "call_logs"
    __table_args__ = (
        db.Index("ix_call_logs_customer_user", "customer_id", "user_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    content = db.Column(db.Text, nullable=False)
    outcome = db.Column(db.String(16), nullable=False, default=CALL_OUTCOME_CONNECTED)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    customer = db.relationship("Customer", backref=db.backref("call_logs", lazy=True))
    user = db.relationship("User")

    @property
    def is_real_contact(self) -> bool:
        return self.outcome != CALL_OUTCOME_NO_ANSWER

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "user_id": self.user_id,
            "content": self.content,
            "outcome": self.outcome,
            "created_at": to_utc_z(self.created_at),
        }


class VisitSchedule(db.Model):
    """Planned site visit. Only the author link matters to this service."""
    __tablename__ = "visit_schedules"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    visit_date = db.Column(db.DateTime(timezone=True), nullable=False)
    memo = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())


class Notice(db.Model):
    """Notice-board post. Only the author link matters to this service."""
    __tablename__ = "notices"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    author_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    title = db.Column(db.String(255), nullable=False)
    content = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
