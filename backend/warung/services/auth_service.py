# Overview: Back-office users: bcrypt passwords, strength rules and login.

import re

import bcrypt
from flask import current_app

from ..extensions import db
from ..models import User
from warung.time_utils import utcnow


PASSWORD_RULES = (
    (r"[A-Z]", "Password must contain at least one uppercase letter"),
    (r"[a-z]", "Password must contain at least one lowercase letter"),
    (r"\d", "Password must contain at least one digit"),
    (r"[!@#$%^&*(),.'\":{}|<>]", "Password must contain at least one special character"),
)


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""


def validate_password_strength(password: str) -> None:
    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")
    for pattern, message in PASSWORD_RULES:
        if not re.search(pattern, password):
            raise PasswordValidationError(message)


def hash_password(password: str) -> str:
    """Validate strength, then bcrypt with BCRYPT_LOG_ROUNDS."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=current_app.config.get("BCRYPT_LOG_ROUNDS", 12))
    return bcrypt.hashpw(password.encode('utf-8'), salt).decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        # malformed stored hash
        return False


def create_user(username: str, email: str, password: str) -> User:
    """
    Raises:
        ValueError: missing fields, or username/email taken
        PasswordValidationError: weak password
    """
    username = (username or "").strip()
    email = (email or "").strip().lower()
    if not username or not email:
        raise ValueError("username and email are required")

    taken = db.session.query(User).filter(
        db.or_(User.username == username, User.email == email)
    ).first()
    if taken:
        raise ValueError("Username or email already exists")

    user = User(username=username, email=email, password_hash=hash_password(password))
    db.session.add(user)
    db.session.commit()
    current_app.logger.info("Created user %s (id=%s)", user.username, user.id)
    return user


def authenticate(username: str, password: str) -> User | None:
    """Active user matching username or email and password; stamps last_login_at."""
    user = db.session.query(User).filter(
        db.or_(User.username == username, User.email == username),
        User.is_active.is_(True),
    ).first()

    if user is None or not verify_password(password, user.password_hash):
        current_app.logger.info("Failed login for %s", username)
        return None

    user.last_login_at = utcnow()
    db.session.commit()
    return user
