"""
routes/groups.py — Group and membership route handlers.

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - No business logic. No DB queries. No bare SQL.

Endpoints (base url_prefix=/api/v1/groups):
  POST   /groups                        → 201  create group (caller becomes administrator)
  GET    /groups                        → 200  list caller's groups
  GET    /groups/:id                    → 200  get group + members
  PATCH  /groups/:id                    → 200  update group (administrators)
  POST   /groups/:id/members            → 201  add member (administrators)
  PATCH  /groups/:id/members/:uid       → 200  change role (administrators)
  DELETE /groups/:id/members/:uid       → 200  remove member (administrators or self)
  GET    /groups/:id/audit-log          → 200  audit trail (administrators)

Group deletion and restore live in routes/lifecycle.py.
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from backend.app.errors import AppError, ErrorCode
from backend.app.extensions import db
from backend.app.middleware.auth_middleware import require_auth
from backend.app.schemas.group_schema import (
    AddMemberSchema,
    ChangeRoleSchema,
    CreateGroupSchema,
    UpdateGroupSchema,
)
from backend.app.schemas.serializers import audit_entries_out
from backend.app.services import audit_service, group_service

groups_bp = Blueprint("groups", __name__)


@groups_bp.route("/", methods=["POST"])
@require_auth
def create_group():
    """POST /groups — Create a new group. Caller becomes its first administrator."""
    data = CreateGroupSchema().load(request.get_json(force=True) or {})
    result = group_service.create_group(
        data=data,
        creator_id=g.user_id,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 201


@groups_bp.route("/", methods=["GET"])
@require_auth
def list_groups():
    """GET /groups — List all active groups the authenticated user belongs to."""
    result = group_service.list_groups(user_id=g.user_id, session=db.session)
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/<int:group_id>", methods=["GET"])
@require_auth
def get_group(group_id: int):
    result = group_service.get_group(
        group_id=group_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/<int:group_id>", methods=["PATCH"])
@require_auth
def update_group(group_id: int):
    data = UpdateGroupSchema().load(request.get_json(force=True) or {})
    result = group_service.update_group(
        group_id=group_id,
        caller_id=g.user_id,
        data=data,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/<int:group_id>/members", methods=["POST"])
@require_auth
def add_member(group_id: int):
    """POST /groups/:id/members — Add a user by user_id or email. Administrators only."""
    data = AddMemberSchema().load(request.get_json(force=True) or {})
    result = group_service.add_member(
        group_id=group_id,
        caller_id=g.user_id,
        data=data,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 201


@groups_bp.route("/<int:group_id>/members/<int:user_id>", methods=["PATCH"])
@require_auth
def change_member_role(group_id: int, user_id: int):
    data = ChangeRoleSchema().load(request.get_json(force=True) or {})
    result = group_service.change_member_role(
        group_id=group_id,
        caller_id=g.user_id,
        target_user_id=user_id,
        role=data["role"],
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/<int:group_id>/members/<int:user_id>", methods=["DELETE"])
@require_auth
def remove_member(group_id: int, user_id: int):
    """
    DELETE /groups/:id/members/:uid

    Administrators may remove any member; members may remove themselves.
    The last administrator cannot be removed.
    """
    group_service.remove_member(
        group_id=group_id,
        caller_id=g.user_id,
        target_user_id=user_id,
        session=db.session,
    )
    db.session.commit()
    return jsonify({
        "data": {"group_id": group_id, "user_id": user_id, "removed": True},
        "warnings": [],
    }), 200


@groups_bp.route("/<int:group_id>/audit-log", methods=["GET"])
@require_auth
def get_audit_log(group_id: int):
    """GET /groups/:id/audit-log?limit=N — Newest first. Administrators only."""
    limit = request.args.get("limit", 100, type=int)
    if limit < 1 or limit > 500:
        raise AppError(
            ErrorCode.INVALID_FIELD,
            "limit must be between 1 and 500.",
            400,
            field="limit",
        )
    entries = audit_service.get_group_audit_log(
        group_id=group_id,
        caller_id=g.user_id,
        session=db.session,
        limit=limit,
    )
    return jsonify({"data": audit_entries_out.dump(entries), "warnings": []}), 200
