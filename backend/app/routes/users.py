"""
routes/users.py — User directory and profile route handlers.

Endpoints (base url_prefix=/api/v1/users):
  GET    /users       → 200  active users
  PATCH  /users/me    → 200  update own profile

Account deletion and restore live in routes/lifecycle.py.
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from backend.app.extensions import db
from backend.app.middleware.auth_middleware import require_auth
from backend.app.schemas.auth_schema import UpdateProfileSchema
from backend.app.services import user_service

users_bp = Blueprint("users", __name__)


@users_bp.route("", methods=["GET"])
@require_auth
def list_users():
    result = user_service.list_users(session=db.session)
    return jsonify({"data": result, "warnings": []}), 200


@users_bp.route("/me", methods=["PATCH"])
@require_auth
def update_me():
    data = UpdateProfileSchema().load(request.get_json(force=True) or {})
    result = user_service.update_profile(
        user_id=g.user_id,
        data=data,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200
