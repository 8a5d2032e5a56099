from __future__ import annotations

from ..extensions import db
from ..permissions import Role
from crm.time_utils import to_utc_z


class Team(db.Model):
    """Sales team. TEAM_LEADER visibility is bounded by team membership."""
    __tablename__ = "teams"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False, unique=True)
    department = db.Column(db.String(128), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "department": self.department,
            "created_at": to_utc_z(self.created_at),
        }


class User(db.Model):
    """
    Staff account.

    Every ownership change is attributed to a user, so accounts are never
    shared. New sign-ups start as PENDING and can do nothing until an
    administrator approves them.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.Index("ix_users_role_active", "role", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), nullable=False, unique=True, index=True)
    email = db.Column(db.String(255), nullable=False, unique=True)
    name = db.Column(db.String(128), nullable=False)
    phone = db.Column(db.String(32), nullable=True)

    # Bcrypt hashed password
    password_hash = db.Column(db.String(255), nullable=False)

    # One of crm.permissions.Role
    role = db.Column(db.String(16), nullable=False, default=Role.PENDING.value, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    # Grouping used by the view-scope resolver
    team_id = db.Column(db.Integer, db.ForeignKey("teams.id"), nullable=True, index=True)
    department = db.Column(db.String(128), nullable=True, index=True)

    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)

    team = db.relationship("Team", backref=db.backref("members", lazy=True))

    @property
    def role_enum(self) -> Role:
        return Role.parse(self.role)

    def to_summary(self) -> dict:
        return {"id": self.id, "name": self.name, "role": self.role}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "name": self.name,
            "phone": self.phone,
            "role": self.role,
            "is_active": self.is_active,
            "team_id": self.team_id,
            "department": self.department,
            "approved_at": to_utc_z(self.approved_at),
            "created_at": to_utc_z(self.created_at),
            "last_login_at": to_utc_z(self.last_login_at),
        }


class SessionToken(db.Model):
    """
    Bearer session token.

    SECURITY NOTES:
    - Tokens stored hashed in database (SHA-256)
    - 24-hour absolute timeout
    - 2-hour idle timeout
    - Revocable on logout, deactivation or hard delete
    """
    __tablename__ = "session_tokens"
    __table_args__ = (
        db.Index("ix_session_tokens_user_active", "user_id", "is_revoked"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # Token hash (never store plaintext tokens!)
    token_hash = db.Column(db.String(255), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    is_revoked = db.Column(db.Boolean, nullable=False, default=False, index=True)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_reason = db.Column(db.String(255), nullable=True)

    user_agent = db.Column(db.String(512), nullable=True)
    ip_address = db.Column(db.String(45), nullable=True)  # IPv6 max length

    user = db.relationship("User", backref=db.backref("session_tokens", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
            "last_used_at": to_utc_z(self.last_used_at),
            "expires_at": to_utc_z(self.expires_at),
            "is_revoked": self.is_revoked,
            "revoked_at": to_utc_z(self.revoked_at),
        }


class Permission(db.Model):
    """
    (role, resource, action) -> is_allowed.

    A missing row means "no explicit rule"; the evaluator then applies the
    conservative role-hierarchy fallback. PENDING is denied regardless.
    """
    __tablename__ = "permissions"
    __table_args__ = (
        db.UniqueConstraint("role", "resource", "action", name="uq_permissions_role_resource_action"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    role = db.Column(db.String(16), nullable=False, index=True)
    resource = db.Column(db.String(32), nullable=False)
    action = db.Column(db.String(32), nullable=False)
    is_allowed = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "role": self.role,
            "resource": self.resource,
            "action": self.action,
            "is_allowed": self.is_allowed,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
