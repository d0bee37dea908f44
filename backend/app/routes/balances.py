"""
routes/balances.py — Balance and settlement-plan route handlers.

Layer rules:
  - Call ONE service, return envelope.
  - No business logic. No DB queries. No bare SQL.

Endpoints (base url_prefix=/api/v1/groups):
  GET /groups/:id/balances         → 200  per-member balances + settlement plan
  GET /groups/:id/settlement-plan  → 200  settlement plan only

Both are read-only and computed from one balance scan, inside the request's
transaction.
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify

from backend.app.extensions import db
from backend.app.middleware.auth_middleware import require_auth
from backend.app.services import balance_service

balances_bp = Blueprint("balances", __name__)


@balances_bp.route("/<int:group_id>/balances", methods=["GET"])
@require_auth
def get_balances(group_id: int):
    """
    GET /groups/:id/balances

    The service checks the caller may view the group and that balances sum to
    zero, raising INTERNAL_ERROR (500) when they do not.
    """
    result = balance_service.get_balance_response(
        group_id=group_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200


@balances_bp.route("/<int:group_id>/settlement-plan", methods=["GET"])
@require_auth
def get_settlement_plan(group_id: int):
    result = balance_service.get_settlement_plan_response(
        group_id=group_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": result, "warnings": []}), 200
