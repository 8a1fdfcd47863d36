# Overview: Service-layer operations for back-office users; password hashing and credential checks.

"""
Back-office authentication.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters required
- Session tokens managed separately (see session_service.py)
"""

import bcrypt

from ..errors import AuthenticationError, BusinessRuleViolation, ValidationError
from ..extensions import db
from ..models import User
from ..models.auth import ROLE_CASHIER, VALID_ROLES


MIN_PASSWORD_LENGTH = 8


def hash_password(password: str, rounds: int = 12) -> str:
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds))
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """bcrypt.checkpw is timing-safe. Malformed hashes never match."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def create_user(username: str, password: str, role: str = ROLE_CASHIER, *, rounds: int = 12) -> User:
    username = (username or "").strip()
    if not username:
        raise ValidationError("username is required")
    if role not in VALID_ROLES:
        raise ValidationError("Invalid role", details={"allowed": list(VALID_ROLES)})
    if db.session.query(User).filter_by(username=username).first() is not None:
        raise BusinessRuleViolation("Username already exists", details={"username": username})

    user = User(
        username=username,
        password_hash=hash_password(password, rounds=rounds),
        role=role,
        is_active=True,
    )
    db.session.add(user)
    db.session.commit()
    return user


def authenticate(username: str, password: str) -> User:
    """
    Check credentials.

    Raises AuthenticationError with one generic message for unknown users,
    wrong passwords and deactivated accounts.
    """
    if not isinstance(username, str) or not isinstance(password, str):
        raise AuthenticationError("Invalid credentials")

    user = db.session.query(User).filter_by(username=username.strip()).first()
    if user is None or not user.is_active or not verify_password(password, user.password_hash):
        raise AuthenticationError("Invalid credentials")
    return user
