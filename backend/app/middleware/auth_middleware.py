"""
middleware/auth_middleware.py — JWT authentication decorator.

@require_auth reads "Authorization: Bearer <token>", verifies the HS256
signature and expiry, and puts the caller's id on flask.g.user_id.

Authentication only (401). Whether the caller may touch a given group is
decided by permission_service (403). Services receive the id as a plain int.

Error codes:
  TOKEN_MISSING  (401) — no Authorization header
  TOKEN_INVALID  (401) — malformed header, bad signature or bad 'sub'
  TOKEN_EXPIRED  (401) — exp claim is in the past
"""

from __future__ import annotations

import functools
from typing import Callable

import jwt
from flask import current_app, g, request

from backend.app.errors import AppError, ErrorCode


def require_auth(f: Callable) -> Callable:
    """
    Route decorator that enforces JWT authentication.

    Usage:
        @bp.get("/groups")
        @require_auth
        def list_groups():
            caller_id = g.user_id  # always an int here
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        g.user_id = authenticate_request()
        return f(*args, **kwargs)

    return decorated


def _bearer_token() -> str:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header:
        raise AppError(
            ErrorCode.TOKEN_MISSING,
            "Authentication required. Provide a Bearer token in the Authorization header.",
            401,
        )

    parts = auth_header.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "Authorization header must be in the format: Bearer <token>.",
            401,
        )
    return parts[1]


def authenticate_request() -> int:
    """
    Returns the user id carried by the request's access token.

    Kept apart from the decorator so tests can call it inside a
    test_request_context without a view function.
    """
    try:
        payload = jwt.decode(
            _bearer_token(),
            current_app.config["JWT_SECRET_KEY"],
            algorithms=[current_app.config.get("JWT_ALGORITHM", "HS256")],
        )
    except jwt.ExpiredSignatureError as exc:
        raise AppError(
            ErrorCode.TOKEN_EXPIRED,
            "The access token has expired. Log in again to obtain a new one.",
            401,
        ) from exc
    except jwt.InvalidTokenError as exc:
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "The access token is invalid or has been tampered with.",
            401,
        ) from exc

    try:
        return int(payload["sub"])
    except (KeyError, TypeError, ValueError) as exc:
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "The access token does not carry a valid 'sub' user id.",
            401,
        ) from exc
