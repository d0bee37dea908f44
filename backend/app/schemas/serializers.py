"""
schemas/serializers.py — Response shapes for ledger records.

Dump-only ma.Schema classes for expenses, payments and audit entries.
Amounts are dumped as strings so they keep their exact scale.
"""

from __future__ import annotations

from marshmallow import fields

from backend.app.extensions import ma


class ExpenseShareOut(ma.Schema):
    id = fields.Int()
    user_id = fields.Int()
    display_name = fields.Function(lambda share: share.user.display_name)
    share_amount = fields.Decimal(as_string=True)
    share_percentage = fields.Decimal(as_string=True, allow_none=True)
    share_count = fields.Int(allow_none=True)


class ExpenseOut(ma.Schema):
    id = fields.Int()
    group_id = fields.Int()
    payer_id = fields.Int()
    payer_name = fields.Function(lambda expense: expense.payer.display_name)
    amount = fields.Decimal(as_string=True)
    currency = fields.Str()
    description = fields.Str()
    split_method = fields.Function(lambda expense: expense.split_method.value)
    expense_date = fields.Date()
    notes = fields.Str(allow_none=True)
    created_at = fields.DateTime()
    updated_at = fields.DateTime(allow_none=True)
    deleted_at = fields.DateTime(allow_none=True)
    shares = fields.List(fields.Nested(ExpenseShareOut))


class PaymentOut(ma.Schema):
    id = fields.Int()
    group_id = fields.Int()
    payer_id = fields.Int()
    payer_name = fields.Function(lambda payment: payment.payer.display_name)
    recipient_id = fields.Int()
    recipient_name = fields.Function(lambda payment: payment.recipient.display_name)
    amount = fields.Decimal(as_string=True)
    currency = fields.Str()
    payment_date = fields.Date()
    notes = fields.Str(allow_none=True)
    created_at = fields.DateTime()
    deleted_at = fields.DateTime(allow_none=True)


class AuditEntryOut(ma.Schema):
    id = fields.Int()
    entity_type = fields.Function(lambda entry: entry.entity_type.value)
    entity_id = fields.Int()
    action = fields.Function(lambda entry: entry.action.value)
    user_id = fields.Int(allow_none=True)
    user_email = fields.Str()
    user_display_name = fields.Str()
    group_id = fields.Int(allow_none=True)
    group_name = fields.Str(allow_none=True)
    before_state = fields.Dict(allow_none=True)
    after_state = fields.Dict(allow_none=True)
    created_at = fields.DateTime()


expense_out = ExpenseOut()
expenses_out = ExpenseOut(many=True)
payment_out = PaymentOut()
payments_out = PaymentOut(many=True)
audit_entries_out = AuditEntryOut(many=True)
