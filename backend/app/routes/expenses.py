"""
routes/expenses.py — Expense route handlers.

Registered at url_prefix=/api/v1 (not /api/v1/expenses) because this blueprint
owns BOTH the group-scoped paths (/groups/:id/expenses) and the
expense-ID paths (/expenses/:id).

Layer rules:
  - Parse, validate, call ONE service, commit, return envelope.
  - No business logic. No DB queries. No bare SQL.

Endpoints:
  POST   /groups/:id/expenses          → 201  create expense and shares
  GET    /groups/:id/expenses          → 200  list active expenses
  GET    /expenses/:id                 → 200  get expense + shares
  PATCH  /expenses/:id                 → 200  partial update
  GET    /expenses/:id/split-validity  → 200  do the shares add up?

Soft delete, restore and permanent delete live in routes/lifecycle.py.
"""

from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from backend.app.currency import foreign_currency_warnings
from backend.app.extensions import db
from backend.app.middleware.auth_middleware import require_auth
from backend.app.schemas.expense_schema import CreateExpenseSchema, PatchExpenseSchema
from backend.app.schemas.serializers import expense_out, expenses_out
from backend.app.services import expense_service

expenses_bp = Blueprint("expenses", __name__)


def _tolerance():
    return current_app.config["SPLIT_TOLERANCE"]


def _warnings_for(expense) -> list[dict]:
    return foreign_currency_warnings(expense.currency, expense.group.primary_currency)


# ── Group-scoped expense routes ────────────────────────────────────────────

@expenses_bp.route("/groups/<int:group_id>/expenses", methods=["POST"])
@require_auth
def create_expense(group_id: int):
    """POST /groups/:id/expenses — Record a new expense with its shares."""
    data = CreateExpenseSchema().load(request.get_json(force=True) or {})
    expense = expense_service.create_expense(
        group_id=group_id,
        caller_id=g.user_id,
        data=data,
        session=db.session,
        tolerance=_tolerance(),
    )
    db.session.commit()
    return jsonify({"data": expense_out.dump(expense), "warnings": _warnings_for(expense)}), 201


@expenses_bp.route("/groups/<int:group_id>/expenses", methods=["GET"])
@require_auth
def list_expenses(group_id: int):
    expenses = expense_service.list_expenses(
        group_id=group_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": expenses_out.dump(expenses), "warnings": []}), 200


# ── Expense-ID routes ──────────────────────────────────────────────────────

@expenses_bp.route("/expenses/<int:expense_id>", methods=["GET"])
@require_auth
def get_expense(expense_id: int):
    expense = expense_service.get_expense(
        expense_id=expense_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": expense_out.dump(expense), "warnings": []}), 200


@expenses_bp.route("/expenses/<int:expense_id>", methods=["PATCH"])
@require_auth
def edit_expense(expense_id: int):
    """
    PATCH /expenses/:id — Partial update.
    Changing amount, currency, split_method or participants replaces the shares.
    """
    data = PatchExpenseSchema().load(request.get_json(force=True) or {})
    expense = expense_service.edit_expense(
        expense_id=expense_id,
        caller_id=g.user_id,
        data=data,
        session=db.session,
        tolerance=_tolerance(),
    )
    db.session.commit()
    return jsonify({"data": expense_out.dump(expense), "warnings": _warnings_for(expense)}), 200


@expenses_bp.route("/expenses/<int:expense_id>/split-validity", methods=["GET"])
@require_auth
def split_validity(expense_id: int):
    result = expense_service.check_split_validity(
        expense_id=expense_id,
        caller_id=g.user_id,
        session=db.session,
        tolerance=_tolerance(),
    )
    return jsonify({"data": result, "warnings": []}), 200
