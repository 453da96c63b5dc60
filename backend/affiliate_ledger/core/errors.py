"""
Error taxonomy for the ledger. Every error carries a stable code that
the HTTP layer echoes in the X-Error-Code header.
"""

from __future__ import annotations

from typing import Any


class LedgerError(Exception):
    code = "ledger_error"
    status_code = 400

    def __init__(self, message: str | None = None, **details: Any) -> None:
        self.message = message or self.code.replace("_", " ")
        self.details = {key: value for key, value in details.items() if value is not None}
        super().__init__(self.message)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        payload.update(self.details)
        return payload


# Validation: nothing persisted, safe to retry with corrected input.


class UnknownReferralCode(LedgerError):
    code = "unknown_referral_code"
    status_code = 404


class MissingField(LedgerError):
    code = "missing_field"
    status_code = 422


class InvalidField(LedgerError):
    code = "invalid_field"
    status_code = 422


class InvalidAmount(LedgerError):
    code = "invalid_amount"
    status_code = 422


# Conflict: request refused, state unchanged.


class InsufficientBalance(LedgerError):
    code = "insufficient_balance"
    status_code = 409


class InvalidTransition(LedgerError):
    code = "invalid_transition"
    status_code = 409


class DuplicateOrder(LedgerError):
    code = "duplicate_order"
    status_code = 409


class PayoutContention(LedgerError):
    """Concurrent requests kept moving the balance; funds still cover the request."""

    code = "payout_contention"
    status_code = 409


# Inactive entity: terminal for the current request.


class NotFound(LedgerError):
    code = "not_found"
    status_code = 404


class AffiliateInactive(LedgerError):
    code = "affiliate_inactive"
    status_code = 409


class CodeGenerationExhausted(LedgerError):
    code = "code_generation_exhausted"
    status_code = 503


class AccessDenied(LedgerError):
    code = "access_denied"
    status_code = 403
