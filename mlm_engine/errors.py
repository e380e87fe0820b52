# mlm_engine/errors.py
"""
Domain errors with stable codes.

Services raise these; the gateway turns them into
{"success": False, "error": {...}} results.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Stable error codes exposed to callers."""
    # Validation
    INVALID_RANK = "INVALID_RANK"
    INVALID_PAYMENT_DETAILS = "INVALID_PAYMENT_DETAILS"
    BELOW_MINIMUM = "BELOW_MINIMUM"
    ABOVE_MAXIMUM = "ABOVE_MAXIMUM"
    INVALID_WITHDRAWAL_METHOD = "INVALID_WITHDRAWAL_METHOD"
    INVALID_CATALOG = "INVALID_CATALOG"
    INVALID_TRANSFER = "INVALID_TRANSFER"
    INVALID_INPUT = "INVALID_INPUT"

    # Business rules
    SEQUENCE_VIOLATION = "SEQUENCE_VIOLATION"
    DUPLICATE_PENDING_TRANSACTION = "DUPLICATE_PENDING_TRANSACTION"
    DUPLICATE_PENDING_WITHDRAWAL = "DUPLICATE_PENDING_WITHDRAWAL"
    DUPLICATE_PROOF = "DUPLICATE_PROOF"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    DAILY_LIMIT_EXCEEDED = "DAILY_LIMIT_EXCEEDED"
    INVALID_STATE_TRANSITION = "INVALID_STATE_TRANSITION"
    CLAIM_NOT_ALLOWED = "CLAIM_NOT_ALLOWED"

    # Lookups
    MEMBER_NOT_FOUND = "MEMBER_NOT_FOUND"
    SPONSOR_NOT_FOUND = "SPONSOR_NOT_FOUND"
    TRANSACTION_NOT_FOUND = "TRANSACTION_NOT_FOUND"
    WITHDRAWAL_NOT_FOUND = "WITHDRAWAL_NOT_FOUND"
    PAYOUT_ITEM_NOT_FOUND = "PAYOUT_ITEM_NOT_FOUND"
    FUND_REQUEST_NOT_FOUND = "FUND_REQUEST_NOT_FOUND"

    # Infrastructure
    TRANSIENT_CONFLICT = "TRANSIENT_CONFLICT"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class MLMError(Exception):
    """Base class for all domain errors."""
    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    retryable: bool = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        error = {
            "code": self.code.value,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.details:
            error["details"] = self.details
        return error


# ═══════════════════════════════════════════════════════════════════════
# VALIDATION ERRORS (rejected before any state change)
# ═══════════════════════════════════════════════════════════════════════

class ValidationError(MLMError):
    code = ErrorCode.INVALID_INPUT


class InvalidRank(ValidationError):
    code = ErrorCode.INVALID_RANK


class InvalidPaymentDetails(ValidationError):
    code = ErrorCode.INVALID_PAYMENT_DETAILS


class BelowMinimum(ValidationError):
    code = ErrorCode.BELOW_MINIMUM


class AboveMaximum(ValidationError):
    code = ErrorCode.ABOVE_MAXIMUM


class InvalidWithdrawalMethod(ValidationError):
    code = ErrorCode.INVALID_WITHDRAWAL_METHOD


class InvalidCatalog(ValidationError):
    code = ErrorCode.INVALID_CATALOG


class InvalidTransfer(ValidationError):
    code = ErrorCode.INVALID_TRANSFER


# ═══════════════════════════════════════════════════════════════════════
# BUSINESS RULE VIOLATIONS (never retried automatically)
# ═══════════════════════════════════════════════════════════════════════

class BusinessRuleError(MLMError):
    pass


class SequenceViolation(BusinessRuleError):
    code = ErrorCode.SEQUENCE_VIOLATION


class DuplicatePendingTransaction(BusinessRuleError):
    code = ErrorCode.DUPLICATE_PENDING_TRANSACTION


class DuplicatePendingWithdrawal(BusinessRuleError):
    code = ErrorCode.DUPLICATE_PENDING_WITHDRAWAL


class DuplicateProof(BusinessRuleError):
    code = ErrorCode.DUPLICATE_PROOF


class InsufficientBalance(BusinessRuleError):
    code = ErrorCode.INSUFFICIENT_BALANCE


class DailyLimitExceeded(BusinessRuleError):
    code = ErrorCode.DAILY_LIMIT_EXCEEDED


class InvalidStateTransition(BusinessRuleError):
    code = ErrorCode.INVALID_STATE_TRANSITION


class ClaimNotAllowed(BusinessRuleError):
    """Locked income exists but the member does not qualify yet, or there is none."""
    code = ErrorCode.CLAIM_NOT_ALLOWED


# ═══════════════════════════════════════════════════════════════════════
# NOT FOUND
# ═══════════════════════════════════════════════════════════════════════

class NotFoundError(MLMError):
    pass


class MemberNotFound(NotFoundError):
    code = ErrorCode.MEMBER_NOT_FOUND


class SponsorNotFound(NotFoundError):
    code = ErrorCode.SPONSOR_NOT_FOUND


class TransactionNotFound(NotFoundError):
    code = ErrorCode.TRANSACTION_NOT_FOUND


class WithdrawalNotFound(NotFoundError):
    code = ErrorCode.WITHDRAWAL_NOT_FOUND


class PayoutItemNotFound(NotFoundError):
    code = ErrorCode.PAYOUT_ITEM_NOT_FOUND


class FundRequestNotFound(NotFoundError):
    code = ErrorCode.FUND_REQUEST_NOT_FOUND


# ═══════════════════════════════════════════════════════════════════════
# TRANSIENT
# ═══════════════════════════════════════════════════════════════════════

class TransientError(MLMError):
    """Concurrency conflict that survived all retries. Retrying later is reasonable."""
    code = ErrorCode.TRANSIENT_CONFLICT
    retryable = True


# ═══════════════════════════════════════════════════════════════════════
# RESULT ENVELOPE
# ═══════════════════════════════════════════════════════════════════════

def ok(data: Any = None) -> Dict[str, Any]:
    return {"success": True, "data": data if data is not None else {}}


def fail(error: MLMError) -> Dict[str, Any]:
    return {"success": False, "error": error.to_dict()}


def internal_failure() -> Dict[str, Any]:
    return {
        "success": False,
        "error": {
            "code": ErrorCode.INTERNAL_ERROR.value,
            "message": "Internal error, please try again later",
            "retryable": False,
        }
    }
