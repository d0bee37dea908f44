"""
schemas/expense_schema.py — Marshmallow schemas for expense endpoints.

Validation responsibility:
  - This file:
      - Field types, lengths, enum values
      - Amount strictly positive with at most 3 decimal places (the widest
        currency); the per-currency limit needs the group and lives in the
        service
      - expense_date no later than tomorrow
      - SPLIT_INPUT_MISSING (400) — non-equal splits need a participants array
      - DUPLICATE_SHARE_USER (400) — the same user listed twice
      - Non-empty-after-trim enforcement for description
  - services/expense_service.py:
      - SPLIT_SUM_MISMATCH / PERCENTAGE_SUM_MISMATCH (422) — Decimal arithmetic
      - PAYER_NOT_MEMBER / PARTICIPANT_NOT_MEMBER (422)   — DB membership lookup
      - INVALID_CURRENCY / INVALID_AMOUNT_PRECISION (422) — currency table
      - EXPENSE_DELETED (422)                             — DB record lookup
      - FORBIDDEN (403)                                   — role lookup

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
           See extensions.py.
"""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

from marshmallow import (
    Schema,
    ValidationError,
    fields,
    validate,
    validates,
    validates_schema,
)

from backend.app.errors import ErrorCode
from backend.app.models.expense import SplitMethod

# Largest scale of any supported currency (BHD, KWD, ...).
_MAX_DECIMAL_PLACES = 3


# ── Shared validators ─────────────────────────────────────────────────────

def _validate_monetary_amount(value: Decimal) -> None:
    """
    Strictly positive, at most three decimal places.

    More places are REJECTED with INVALID_AMOUNT_PRECISION, never rounded.
    The handler maps a message equal to an ErrorCode onto that code.
    """
    if value <= Decimal("0"):
        raise ValidationError("Amount must be greater than zero.")
    if value.normalize().as_tuple().exponent < -_MAX_DECIMAL_PLACES:
        raise ValidationError(ErrorCode.INVALID_AMOUNT_PRECISION)


def _validate_non_empty_after_trim(value: str) -> None:
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


def _validate_not_after_tomorrow(value: date) -> None:
    if value > date.today() + timedelta(days=1):
        raise ValidationError("The date cannot be later than tomorrow.")


def _check_participants(split_method: SplitMethod | None, participants: list[dict] | None) -> None:
    if participants is None:
        if split_method not in (None, SplitMethod.EQUAL):
            raise ValidationError({"participants": [ErrorCode.SPLIT_INPUT_MISSING]})
        return

    user_ids = [p["user_id"] for p in participants]
    if len(user_ids) != len(set(user_ids)):
        raise ValidationError({"participants": [ErrorCode.DUPLICATE_SHARE_USER]})


_description_rules = [
    validate.Length(min=1, max=500, error="Description must be between 1 and 500 characters."),
    _validate_non_empty_after_trim,
]

_currency_rule = validate.Regexp(
    r"^[A-Z]{3}$",
    error="Currency must be a three-letter upper-case ISO-4217 code.",
)


# ── Sub-schema: one entry in the `participants` array ─────────────────────

class ParticipantInputSchema(Schema):
    """
    One participant of a split. Which optional field is needed depends on
    the split method:

      equal       none
      percentage  share_percentage  (0–100)
      shares      share_count       (positive integer)
      exact       share_amount      (positive Decimal)
    """

    user_id = fields.Int(
        required=True,
        strict=True,
        validate=validate.Range(min=1, error="user_id must be a positive integer."),
    )

    share_percentage = fields.Decimal(
        validate=validate.Range(
            min=Decimal("0"),
            max=Decimal("100"),
            min_inclusive=False,
            error="share_percentage must be greater than 0 and at most 100.",
        ),
    )

    share_count = fields.Int(
        strict=True,
        validate=validate.Range(min=1, error="share_count must be a positive integer."),
    )

    share_amount = fields.Decimal(validate=_validate_monetary_amount)


# ── Create expense ─────────────────────────────────────────────────────────

class CreateExpenseSchema(Schema):
    """
    POST /groups/:id/expenses

    split_method defaults to 'equal'. With 'equal' and no participants the
    service splits across every current member.
    """

    payer_id = fields.Int(
        required=True,
        strict=True,
        validate=validate.Range(min=1, error="payer_id must be a positive integer."),
    )

    description = fields.Str(required=True, validate=_description_rules)

    amount = fields.Decimal(required=True, validate=_validate_monetary_amount)

    currency = fields.Str(validate=_currency_rule)

    split_method = fields.Enum(
        SplitMethod,
        load_default=SplitMethod.EQUAL,
        by_value=True,
        error_messages={"unknown": ErrorCode.INVALID_SPLIT_METHOD},
    )

    expense_date = fields.Date(validate=_validate_not_after_tomorrow)

    notes = fields.Str(allow_none=True, validate=validate.Length(max=1000))

    participants = fields.List(
        fields.Nested(ParticipantInputSchema),
        load_default=None,
    )

    @validates_schema
    def validate_participants(self, data: dict, **kwargs) -> None:
        _check_participants(data.get("split_method"), data.get("participants"))


# ── Patch expense ──────────────────────────────────────────────────────────

class PatchExpenseSchema(Schema):
    """
    PATCH /expenses/:id

    Every field optional. Changing amount, currency, split_method or
    participants recomputes the shares; when participants are left out the
    current ones are reused with their stored inputs.
    """

    payer_id = fields.Int(
        strict=True,
        validate=validate.Range(min=1, error="payer_id must be a positive integer."),
    )

    description = fields.Str(validate=_description_rules)

    amount = fields.Decimal(validate=_validate_monetary_amount)

    currency = fields.Str(validate=_currency_rule)

    split_method = fields.Enum(
        SplitMethod,
        by_value=True,
        error_messages={"unknown": ErrorCode.INVALID_SPLIT_METHOD},
    )

    expense_date = fields.Date(validate=_validate_not_after_tomorrow)

    notes = fields.Str(allow_none=True, validate=validate.Length(max=1000))

    participants = fields.List(fields.Nested(ParticipantInputSchema))

    @validates("participants")
    def validate_participants_not_empty(self, value: list, **kwargs) -> None:
        if not value:
            raise ValidationError("participants must not be empty.")

    @validates_schema
    def validate_participants(self, data: dict, **kwargs) -> None:
        if "participants" in data:
            _check_participants(None, data["participants"])
