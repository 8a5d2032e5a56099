# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
Account creation and credential checks.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters, at least one letter and one digit
- Self sign-ups start as PENDING and are denied everything until approved
"""

import re

import bcrypt

from ..errors import ConflictError, ValidationError
from ..extensions import db
from ..models import User
from ..permissions import Role
from crm.time_utils import utcnow


BCRYPT_ROUNDS = 12


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""

    def __init__(self, message: str):
        super().__init__(message, details={"password": message})


def validate_password_strength(password: str) -> None:
    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")
    if not re.search(r"[A-Za-z]", password):
        raise PasswordValidationError("Password must contain at least one letter")
    if not re.search(r"\d", password):
        raise PasswordValidationError("Password must contain at least one digit")


def hash_password(password: str) -> str:
    """Validate strength, then bcrypt-hash the password."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode('utf-8'), salt).decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        # Malformed hash in the database
        return False


def create_user(
    *,
    username: str,
    email: str,
    password: str,
    name: str,
    role: Role | str = Role.PENDING,
    phone: str | None = None,
    team_id: int | None = None,
    department: str | None = None,
) -> User:
    """
    Create a staff account. Does not commit.

    Raises ConflictError when the username or email is taken.
    """
    role = Role.parse(role)

    clash = db.session.query(User).filter(
        db.or_(User.username == username, User.email == email)
    ).first()
    if clash:
        field = "username" if clash.username == username else "email"
        raise ConflictError(f"{field} already in use", field=field)

    user = User(
        username=username,
        email=email,
        name=name,
        phone=phone,
        password_hash=hash_password(password),
        role=role.value,
        is_active=True,
        team_id=team_id,
        department=department,
        approved_at=None if role == Role.PENDING else utcnow(),
    )
    db.session.add(user)
    db.session.flush()
    return user


def authenticate(identifier: str, password: str) -> User | None:
    """Look up by username or email; None on any mismatch or inactive account."""
    user = db.session.query(User).filter(
        db.or_(User.username == identifier, User.email == identifier)
    ).first()

    if not user or not user.is_active:
        return None
    if not verify_password(password, user.password_hash):
        return None

    user.last_login_at = utcnow()
    db.session.commit()
    return user
