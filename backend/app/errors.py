"""
errors.py — AppError base class, ledger error taxonomy and code registry.

Every error returned by the GroupLedger API must use a code defined here.
Do not raise strings or generic exceptions from service or route code.

Rules:
  - Error codes are a versioned contract. They do not change once published.
  - Error messages are human-readable prose. They may be improved at any time.
  - Never conflate 401 (unauthenticated) with 403 (unauthorized).

Ledger taxonomy (each is an AppError with a default HTTP status):
  LedgerValidationError  422  malformed input to a core operation
  NotFoundError          404  referenced user/group/expense/payment is missing
  LedgerIntegrityError   409  duplicate key or dangling reference
  ImmutabilityError      409  attempt to alter or remove an audit log entry
  LifecycleError         409  hard delete of an entity that is still active
"""

from __future__ import annotations


class AppError(Exception):

    def __init__(
            self,
            code: str,
            message: str,
            http_status: int,
            field: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code        = code
        self.message     = message
        self.http_status = http_status
        self.field       = field  # which request field caused the error

    def to_dict(self) -> dict:
        payload = {
            "code":    self.code,
            "message": self.message,
        }
        if self.field is not None:
            payload["field"] = self.field
        return {"error": payload}

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(code={self.code!r}, "
            f"http_status={self.http_status}, "
            f"message={self.message!r})"
        )


# ── Ledger taxonomy ────────────────────────────────────────────────────────
#
# Subclasses only fix the default status. Callers still pick a specific
# ErrorCode so clients can tell which rule was violated.
# ──────────────────────────────────────────────────────────────────────────

class LedgerValidationError(AppError):
    default_status = 422

    def __init__(self, code: str, message: str, field: str | None = None) -> None:
        super().__init__(code, message, self.default_status, field=field)


class NotFoundError(AppError):
    default_status = 404

    def __init__(self, code: str, message: str, field: str | None = None) -> None:
        super().__init__(code, message, self.default_status, field=field)


class LedgerIntegrityError(AppError):
    default_status = 409

    def __init__(self, code: str, message: str, field: str | None = None) -> None:
        super().__init__(code, message, self.default_status, field=field)


class ImmutabilityError(AppError):
    default_status = 409

    def __init__(self, message: str) -> None:
        super().__init__(ErrorCode.AUDIT_LOG_IMMUTABLE, message, self.default_status)


class LifecycleError(AppError):
    default_status = 409

    def __init__(self, code: str, message: str) -> None:
        super().__init__(code, message, self.default_status)


# ── Error Code Registry ────────────────────────────────────────────────────
#
# Organised by category. HTTP status is indicated in the comment.
#
# IMPORTANT: these are the string values sent in the API response.
# Do not rename them without a major version bump.
# ──────────────────────────────────────────────────────────────────────────

class ErrorCode:

    # ── Schema / Input Errors (400) ────────────────────────────────────────
    MISSING_FIELD              = "MISSING_FIELD"
    INVALID_FIELD              = "INVALID_FIELD"
    INVALID_AMOUNT_PRECISION   = "INVALID_AMOUNT_PRECISION"
    INVALID_SPLIT_METHOD       = "INVALID_SPLIT_METHOD"
    INVALID_ROLE               = "INVALID_ROLE"
    INVALID_ENTITY_TYPE        = "INVALID_ENTITY_TYPE"

    # ── Conflict Errors (409) ──────────────────────────────────────────────
    DUPLICATE_EMAIL            = "DUPLICATE_EMAIL"
    ALREADY_MEMBER             = "ALREADY_MEMBER"
    DUPLICATE_SHARE_USER       = "DUPLICATE_SHARE_USER"
    REFERENCED_ROW_MISSING     = "REFERENCED_ROW_MISSING"
    USER_HAS_LEDGER_HISTORY    = "USER_HAS_LEDGER_HISTORY"
    AUDIT_LOG_IMMUTABLE        = "AUDIT_LOG_IMMUTABLE"
    NOT_SOFT_DELETED           = "NOT_SOFT_DELETED"

    # ── Not Found Errors (404) ─────────────────────────────────────────────
    USER_NOT_FOUND             = "USER_NOT_FOUND"
    GROUP_NOT_FOUND            = "GROUP_NOT_FOUND"
    MEMBER_NOT_FOUND           = "MEMBER_NOT_FOUND"
    EXPENSE_NOT_FOUND          = "EXPENSE_NOT_FOUND"
    PAYMENT_NOT_FOUND          = "PAYMENT_NOT_FOUND"

    # ── Business Rule Violations (422) ────────────────────────────────────
    SPLIT_SUM_MISMATCH         = "SPLIT_SUM_MISMATCH"
    SPLIT_INPUT_MISSING        = "SPLIT_INPUT_MISSING"
    PERCENTAGE_SUM_MISMATCH    = "PERCENTAGE_SUM_MISMATCH"
    PAYER_NOT_MEMBER           = "PAYER_NOT_MEMBER"
    PARTICIPANT_NOT_MEMBER     = "PARTICIPANT_NOT_MEMBER"
    RECIPIENT_NOT_MEMBER       = "RECIPIENT_NOT_MEMBER"
    SELF_PAYMENT               = "SELF_PAYMENT"
    INVALID_CURRENCY           = "INVALID_CURRENCY"
    EXPENSE_DELETED            = "EXPENSE_DELETED"
    LAST_ADMINISTRATOR         = "LAST_ADMINISTRATOR"
    OUTSTANDING_BALANCE        = "OUTSTANDING_BALANCE"
    INVALID_AUDIT_ACTION       = "INVALID_AUDIT_ACTION"
    MISSING_AUDIT_STATE        = "MISSING_AUDIT_STATE"
    NO_ACTOR                   = "NO_ACTOR"

    # ── Auth Errors ────────────────────────────────────────────────────────
    # 401 = we do not know who you are (unauthenticated)
    # 403 = we know who you are, but you are not allowed
    INVALID_CREDENTIALS        = "INVALID_CREDENTIALS"    # 401
    TOKEN_MISSING              = "TOKEN_MISSING"          # 401
    TOKEN_INVALID              = "TOKEN_INVALID"          # 401
    TOKEN_EXPIRED              = "TOKEN_EXPIRED"          # 401
    FORBIDDEN                  = "FORBIDDEN"              # 403

    # ── System Errors (500) ────────────────────────────────────────────────
    INTERNAL_ERROR             = "INTERNAL_ERROR"


# ── Warning Code Registry ──────────────────────────────────────────────────
#
# Warnings are returned alongside a 2xx response in the `warnings` array.
# They do not block the request.
# ──────────────────────────────────────────────────────────────────────────

class WarningCode:

    # Expense or payment is not in the group's primary currency, so it is
    # excluded from balances and settlement plans.
    FOREIGN_CURRENCY = "FOREIGN_CURRENCY"

    # Soft delete / restore was a no-op because the entity was already in
    # the requested state.
    NO_STATE_CHANGE = "NO_STATE_CHANGE"
