# Overview: Staff authentication; bcrypt password hashing and user creation.

"""
Authentication Service

WHY: Every sale and stock movement must be attributable to a person.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters with upper, lower, digit and special character
- Session tokens managed separately (see session_service.py)
"""
from __future__ import annotations

import re

import bcrypt

from ..extensions import db
from ..models import Store, User
from ..permissions import ROLES
from ..time_utils import utcnow
from ..validation import ConflictError, NotFoundError, ValidationError


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""
    code = "weak_password"


def validate_password_strength(password: str) -> None:
    if not password or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")
    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")
    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")
    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")
    if not re.search(r"[!@#$%^&*(),.'\":{}|<>_\-]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str, *, rounds: int = 12) -> str:
    """Hash password using bcrypt. Password is validated for strength first."""
    validate_password_strength(password)
    hashed = bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt(rounds=rounds))
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe check via bcrypt.checkpw; malformed hashes never match."""
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def create_user(
    username: str,
    password: str,
    *,
    role: str = "cashier",
    store_id: int | None = None,
    email: str | None = None,
    name: str | None = None,
    rounds: int = 12,
) -> User:
    """
    Create a staff user.

    Raises:
        ValidationError: bad role, empty username, weak password
        NotFoundError: store_id given but missing
        ConflictError: username taken
    """
    username = (username or "").strip()
    if not username:
        raise ValidationError("username is required")
    if role not in ROLES:
        raise ValidationError(f"role must be one of: {', '.join(ROLES)}")

    if store_id is not None and not db.session.get(Store, store_id):
        raise NotFoundError(f"Store {store_id} not found")

    if db.session.query(User).filter_by(username=username).first():
        raise ConflictError("Username already exists")

    user = User(
        username=username,
        email=email,
        name=name,
        password_hash=hash_password(password, rounds=rounds),
        role=role,
        store_id=store_id,
    )
    db.session.add(user)
    db.session.commit()
    return user


def authenticate(username: str, password: str) -> User | None:
    """
    Returns the User if credentials are valid, None otherwise.
    Updates last_login_at on success.
    """
    user = db.session.query(User).filter(
        db.or_(User.username == username, User.email == username),
        User.is_active.is_(True),
    ).first()
    if not user:
        return None

    if verify_password(password, user.password_hash):
        user.last_login_at = utcnow()
        db.session.commit()
        return user
    return None
