# Overview: Password hashing, user creation and login checks.

"""
Authentication Service

WHY: Every posting, voucher and stock count records created_by, so logins are
personal. Passwords are hashed with bcrypt and must meet strength rules.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters, with upper, lower, digit and special character
- Session tokens managed separately (see session_service.py)
"""

import logging
import re

import bcrypt

from ..extensions import db
from ..models import User
from ..models.auth import USER_ROLES
from erp.time_utils import utcnow

logger = logging.getLogger(__name__)


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Raises PasswordValidationError if requirements not met.
    """
    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str, *, rounds: int = 12) -> str:
    """Validate strength, then hash with bcrypt."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=rounds)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    WHY timing-safe: bcrypt.checkpw() prevents timing attacks automatically.
    """
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        # Malformed hash
        return False


def create_user(
    username: str,
    password: str,
    *,
    name: str | None = None,
    email: str | None = None,
    role: str = "staff",
    rounds: int = 12,
) -> User:
    """
    Create a user with a bcrypt password hash.

    Raises ValueError on duplicate username or unknown role, and
    PasswordValidationError on a weak password.
    """
    username = (username or "").strip()
    if not username:
        raise ValueError("Username is required")
    if role not in USER_ROLES:
        raise ValueError(f"Role must be one of: {', '.join(USER_ROLES)}")

    existing = db.session.query(User).filter(User.username == username).first()
    if existing:
        raise ValueError("Username already exists")

    user = User(
        username=username,
        password_hash=hash_password(password, rounds=rounds),
        name=name or username,
        email=email,
        role=role,
    )

    db.session.add(user)
    db.session.commit()
    logger.info("Created user %s (%s)", username, role)
    return user


def authenticate(username: str, password: str) -> User | None:
    """
    Return the active user for these credentials, or None.

    Updates last_login_at on success.
    """
    user = db.session.query(User).filter(
        User.username == username,
        User.is_active.is_(True),
    ).first()

    if not user or not verify_password(password, user.password_hash):
        return None

    user.last_login_at = utcnow()
    db.session.commit()
    return user


USER_SELF_FIELDS = {"name", "email", "password"}

USER_ADMIN_FIELDS = USER_SELF_FIELDS | {"role", "is_active"}


def update_user(user: User, patch: dict, *, rounds: int = 12) -> bool:
    """
    Apply name/email/password/role/is_active changes to a user.

    The caller decides which of those keys the acting user may send. Returns
    True when the password changed, so the caller can end other sessions.
    """
    if "role" in patch and patch["role"] not in USER_ROLES:
        raise ValueError(f"Role must be one of: {', '.join(USER_ROLES)}")
    if "name" in patch and not (patch["name"] or "").strip():
        raise ValueError("Name cannot be blank")

    password_changed = False
    if patch.get("password"):
        user.password_hash = hash_password(patch["password"], rounds=rounds)
        password_changed = True

    for key in ("name", "email", "role", "is_active"):
        if key in patch:
            value = patch[key]
            setattr(user, key, value.strip() if isinstance(value, str) else value)

    db.session.commit()
    logger.info("Updated user %s", user.username)
    return password_changed
