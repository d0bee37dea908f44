"""
services/auth_service.py — Sign-up, login and access tokens.

Responsibilities:
  - Account creation with a bcrypt password hash
  - Credential checks by email
  - JWT access tokens (HS256, sub = user_id as str)

current_app.config is read here for the JWT secret, TTL and bcrypt cost and
for nothing else. Everything else stays Flask-free.

Sign-up is written with no acting user bound: the audit recorder treats the
new user as their own actor.

Passwords are never stored raw, never logged and never snapshotted into the
audit log (password_hash is not an audited field).
"""

from __future__ import annotations

import secrets
from datetime import datetime, timezone

import bcrypt
import jwt
from flask import current_app
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.app.currency import DEFAULT_CURRENCY
from backend.app.errors import AppError, ErrorCode, LedgerIntegrityError, NotFoundError
from backend.app.models.user import User
from backend.app.services import audit_service


# ── Private helpers ────────────────────────────────────────────────────────

def _create_access_token(user_id: int) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "iat": now,
        "exp": now + current_app.config["JWT_ACCESS_TOKEN_EXPIRES"],
        # Unique per token even when two are issued in the same second.
        "jti": secrets.token_hex(8),
    }
    return jwt.encode(
        payload,
        current_app.config["JWT_SECRET_KEY"],
        algorithm=current_app.config.get("JWT_ALGORITHM", "HS256"),
    )


def _hash_password(password: str) -> str:
    rounds = current_app.config.get("BCRYPT_LOG_ROUNDS", 12)
    return bcrypt.hashpw(
        password.encode("utf-8"),
        bcrypt.gensalt(rounds=rounds),
    ).decode("utf-8")


def build_user_dict(user: User) -> dict:
    """Serialises a User to a plain dict. No business logic."""
    return {
        "id": user.id,
        "email": user.email,
        "display_name": user.display_name,
        "avatar_url": user.avatar_url,
        "preferred_currency": user.preferred_currency,
        "preferred_language": user.preferred_language,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }


def _find_by_email(email: str, session: Session) -> User | None:
    return session.execute(
        select(User).where(func.lower(User.email) == email.lower())
    ).scalar_one_or_none()


# ── Public service functions ───────────────────────────────────────────────

def register_user(data: dict, session: Session) -> dict:
    """
    Creates a new account and issues an access token.

    Args:
        data: Validated dict from RegisterSchema
              (email, display_name, password, preferred_currency?, preferred_language?).

    Raises:
      LedgerIntegrityError(DUPLICATE_EMAIL) — email already registered,
                                              soft-deleted accounts included

    Returns: {"user": {...}, "access_token": "..."}
    """
    email = data["email"].strip().lower()

    if _find_by_email(email, session) is not None:
        raise LedgerIntegrityError(
            ErrorCode.DUPLICATE_EMAIL,
            f"The email address '{email}' is already registered.",
            field="email",
        )

    audit_service.clear_actor(session)

    user = User(
        email=email,
        display_name=data["display_name"],
        password_hash=_hash_password(data["password"]),
        preferred_currency=data.get("preferred_currency") or DEFAULT_CURRENCY,
        preferred_language=data.get("preferred_language") or "en",
    )
    session.add(user)
    try:
        session.flush()
    except IntegrityError as exc:
        raise LedgerIntegrityError(
            ErrorCode.DUPLICATE_EMAIL,
            f"The email address '{email}' is already registered.",
            field="email",
        ) from exc

    return {
        "user": build_user_dict(user),
        "access_token": _create_access_token(user.id),
    }


def login_user(email: str, password: str, session: Session) -> dict:
    """
    Validates credentials and issues an access token.

    Raises:
      AppError(INVALID_CREDENTIALS, 401) — unknown email, soft-deleted account
      or wrong password. One error for all three avoids account enumeration.

    Returns: {"user": {...}, "access_token": "..."}
    """
    user = _find_by_email(email.strip(), session)

    if user is None or user.is_deleted or not bcrypt.checkpw(
            password.encode("utf-8"),
            user.password_hash.encode("utf-8"),
    ):
        raise AppError(
            ErrorCode.INVALID_CREDENTIALS,
            "The email or password is incorrect.",
            401,
        )

    return {
        "user": build_user_dict(user),
        "access_token": _create_access_token(user.id),
    }


def get_current_user(user_id: int, session: Session) -> dict:
    """
    Profile of the authenticated user.

    Raises:
      NotFoundError(USER_NOT_FOUND) — the token outlived its user (deleted
      or soft-deleted since it was issued).
    """
    user = session.get(User, user_id)
    if user is None or user.is_deleted:
        raise NotFoundError(
            ErrorCode.USER_NOT_FOUND,
            f"User {user_id} not found.",
        )
    return build_user_dict(user)
