"""
routes/payments.py — Payment route handlers.

Registered at url_prefix=/api/v1, like expenses_bp, because it owns both the
group-scoped paths and the payment-ID path.

Endpoints:
  POST   /groups/:id/payments   → 201  record a payment (FOREIGN_CURRENCY warning possible)
  GET    /groups/:id/payments   → 200  list active payments
  GET    /payments/:id          → 200  get one payment

Soft delete, restore and permanent delete live in routes/lifecycle.py.
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from backend.app.extensions import db
from backend.app.middleware.auth_middleware import require_auth
from backend.app.schemas.payment_schema import CreatePaymentSchema
from backend.app.schemas.serializers import payment_out, payments_out
from backend.app.services import payment_service

payments_bp = Blueprint("payments", __name__)


@payments_bp.route("/groups/<int:group_id>/payments", methods=["POST"])
@require_auth
def create_payment(group_id: int):
    """
    POST /groups/:id/payments

    The payer defaults to the authenticated user. Returns 201 with a
    FOREIGN_CURRENCY warning when the payment will not count toward balances.
    """
    data = CreatePaymentSchema().load(request.get_json(force=True) or {})
    payment, warnings = payment_service.create_payment(
        group_id=group_id,
        caller_id=g.user_id,
        data=data,
        session=db.session,
    )
    db.session.commit()
    return jsonify({"data": payment_out.dump(payment), "warnings": warnings}), 201


@payments_bp.route("/groups/<int:group_id>/payments", methods=["GET"])
@require_auth
def list_payments(group_id: int):
    payments = payment_service.list_payments(
        group_id=group_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": payments_out.dump(payments), "warnings": []}), 200


@payments_bp.route("/payments/<int:payment_id>", methods=["GET"])
@require_auth
def get_payment(payment_id: int):
    payment = payment_service.get_payment(
        payment_id=payment_id,
        caller_id=g.user_id,
        session=db.session,
    )
    return jsonify({"data": payment_out.dump(payment), "warnings": []}), 200
