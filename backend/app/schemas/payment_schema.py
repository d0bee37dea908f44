"""
schemas/payment_schema.py — Marshmallow schema for payment endpoints.

Validation responsibility:
  - This file: field types, positive amount with at most three decimals,
    dates no later than tomorrow.
  - services/payment_service.py: SELF_PAYMENT, PAYER_NOT_MEMBER,
    RECIPIENT_NOT_MEMBER, INVALID_CURRENCY, per-currency precision. The payer
    defaults to the caller (flask.g), which the schema cannot see.

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
"""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

from marshmallow import Schema, ValidationError, fields, validate

from backend.app.errors import ErrorCode


def _validate_monetary_amount(value: Decimal) -> None:
    if value <= Decimal("0"):
        raise ValidationError("Amount must be greater than zero.")
    if value.normalize().as_tuple().exponent < -3:
        raise ValidationError(ErrorCode.INVALID_AMOUNT_PRECISION)


def _validate_not_after_tomorrow(value: date) -> None:
    if value > date.today() + timedelta(days=1):
        raise ValidationError("The date cannot be later than tomorrow.")


class CreatePaymentSchema(Schema):
    """POST /groups/:id/payments"""

    recipient_id = fields.Int(
        required=True,
        strict=True,
        validate=validate.Range(min=1, error="recipient_id must be a positive integer."),
    )

    # Omitted → the authenticated caller paid.
    payer_id = fields.Int(
        strict=True,
        validate=validate.Range(min=1, error="payer_id must be a positive integer."),
    )

    amount = fields.Decimal(required=True, validate=_validate_monetary_amount)

    currency = fields.Str(
        validate=validate.Regexp(
            r"^[A-Z]{3}$",
            error="Currency must be a three-letter upper-case ISO-4217 code.",
        ),
    )

    payment_date = fields.Date(validate=_validate_not_after_tomorrow)

    notes = fields.Str(allow_none=True, validate=validate.Length(max=1000))
