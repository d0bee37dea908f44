"""
schemas/group_schema.py — Marshmallow schemas for group and membership endpoints.

Validation responsibility:
  - This file: field types, string lengths, non-empty checks (including trim),
    role values.
  - services/group_service.py: existence, ALREADY_MEMBER, LAST_ADMINISTRATOR,
    INVALID_CURRENCY and every permission check.

IMPORTANT: Inherits from marshmallow.Schema directly — never ma.Schema.
           See extensions.py.
"""

from __future__ import annotations

from marshmallow import Schema, ValidationError, fields, validate, validates_schema

from backend.app.errors import ErrorCode
from backend.app.models.membership import MemberRole


def _validate_non_empty_after_trim(value: str) -> None:
    """Mirrors the DB CHECK(LENGTH(TRIM(...)) > 0) at the API layer."""
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


_name_rules = [
    validate.Length(min=1, max=100, error="Group name must be between 1 and 100 characters."),
    _validate_non_empty_after_trim,
]

_currency_rule = validate.Regexp(
    r"^[A-Z]{3}$",
    error="Currency must be a three-letter upper-case ISO-4217 code.",
)


class CreateGroupSchema(Schema):
    """POST /groups. The creator becomes the first administrator."""

    name = fields.Str(required=True, validate=_name_rules)

    description = fields.Str(allow_none=True, validate=validate.Length(max=500))

    primary_currency = fields.Str(validate=_currency_rule)


class UpdateGroupSchema(Schema):
    """PATCH /groups/:id. Administrators only; every field optional."""

    name = fields.Str(validate=_name_rules)

    description = fields.Str(allow_none=True, validate=validate.Length(max=500))

    primary_currency = fields.Str(validate=_currency_rule)


class AddMemberSchema(Schema):
    """
    POST /groups/:id/members

    Identify the user by user_id or by email (exactly one). Role defaults to
    editor.
    """

    user_id = fields.Int(
        strict=True,
        validate=validate.Range(min=1, error="user_id must be a positive integer."),
    )

    email = fields.Email(validate=validate.Length(max=255))

    role = fields.Enum(
        MemberRole,
        by_value=True,
        load_default=MemberRole.EDITOR,
        error_messages={"unknown": ErrorCode.INVALID_ROLE},
    )

    @validates_schema
    def validate_one_identifier(self, data: dict, **kwargs) -> None:
        has_id = data.get("user_id") is not None
        has_email = data.get("email") is not None
        if has_id == has_email:
            raise ValidationError(
                {"user_id": ["Provide exactly one of user_id or email."]}
            )


class ChangeRoleSchema(Schema):
    """PATCH /groups/:id/members/:user_id"""

    role = fields.Enum(
        MemberRole,
        by_value=True,
        required=True,
        error_messages={"unknown": ErrorCode.INVALID_ROLE},
    )
