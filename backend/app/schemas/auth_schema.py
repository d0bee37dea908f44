"""
schemas/auth_schema.py — Marshmallow schemas for authentication and profile endpoints.

Validation responsibility:
  - This file: field types, lengths, formats.
  - services/auth_service.py: DUPLICATE_EMAIL (needs a DB lookup).
  - services/user_service.py: INVALID_CURRENCY for preferred_currency.

IMPORTANT: All schemas inherit from marshmallow.Schema directly.
           Do NOT use ma.Schema here. See extensions.py.
"""

from __future__ import annotations

from marshmallow import Schema, ValidationError, fields, validate, validates


def _validate_non_empty_after_trim(value: str) -> None:
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


_display_name_rules = [
    validate.Length(min=1, max=100, error="Display name must be between 1 and 100 characters."),
    _validate_non_empty_after_trim,
]

_currency_rule = validate.Regexp(
    r"^[A-Z]{3}$",
    error="Currency must be a three-letter upper-case ISO-4217 code.",
)

_language_rule = validate.Regexp(
    r"^[a-z]{2}$",
    error="Language must be a two-letter lower-case code.",
)


class RegisterSchema(Schema):
    """
    POST /auth/register

      email        : valid email, ≤255 chars
      display_name : 1–100 chars, not blank
      password     : min 8 chars, at least one letter and one digit
    """

    email = fields.Email(required=True, validate=validate.Length(max=255))

    display_name = fields.Str(required=True, validate=_display_name_rules)

    password = fields.Str(required=True, load_only=True)

    preferred_currency = fields.Str(required=False, validate=_currency_rule)

    preferred_language = fields.Str(required=False, validate=_language_rule)

    @validates("password")
    def validate_password_strength(self, value: str, **kwargs) -> None:
        if len(value) < 8:
            raise ValidationError("Password must be at least 8 characters long.")
        if not any(c.isalpha() for c in value):
            raise ValidationError("Password must contain at least one letter.")
        if not any(c.isdigit() for c in value):
            raise ValidationError("Password must contain at least one digit.")


class LoginSchema(Schema):
    """POST /auth/login. Credential checks live in auth_service.py."""

    email = fields.Str(required=True)
    password = fields.Str(required=True, load_only=True)


class UpdateProfileSchema(Schema):
    """PATCH /users/me. Every field optional."""

    display_name = fields.Str(validate=_display_name_rules)

    avatar_url = fields.Url(allow_none=True, validate=validate.Length(max=500))

    preferred_currency = fields.Str(validate=_currency_rule)

    preferred_language = fields.Str(validate=_language_rule)
