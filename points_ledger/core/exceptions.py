"""Points Ledger - Custom exceptions.

Every error the ledger can return to a caller derives from ``LedgerError``.
``ConflictError`` is the one exception that never leaves the ledger service:
it signals a lost storage race and is retried internally.
"""

from typing import Any


class LedgerError(Exception):
    """Base exception for all ledger errors."""

    status_code: int = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(LedgerError):
    """Malformed amount or identifier. Not retryable as-is."""

    status_code = 400


class NotFoundError(LedgerError):
    """Unknown user or record."""

    status_code = 404


class RewardNotFoundError(NotFoundError):
    """Reward does not exist."""

    pass


class InsufficientBalanceError(LedgerError):
    """Debit refused because the balance does not cover it."""

    status_code = 402

    def __init__(
        self,
        required: int | None = None,
        available: int | None = None,
        message: str = "Insufficient points",
    ) -> None:
        details: dict[str, Any] = {}
        if required is not None:
            details["required"] = required
        if available is not None:
            details["available"] = available
        super().__init__(message, details)


class IdempotencyConflictError(LedgerError):
    """Idempotency key already used for a different operation."""

    status_code = 409


class InvalidRewardStateError(LedgerError):
    """Reward cannot make the requested transition."""

    status_code = 409


class ConflictError(LedgerError):
    """Lost a compare-and-swap race against another writer."""

    status_code = 409


class DuplicateTransactionError(LedgerError):
    """A transaction with this id was recorded by a concurrent request."""

    status_code = 409

    def __init__(self, transaction_id: str) -> None:
        self.transaction_id = transaction_id
        super().__init__(f"Transaction {transaction_id} already recorded")


class InternalError(LedgerError):
    """Storage unavailable. Safe to retry with the same idempotency key."""

    status_code = 503
