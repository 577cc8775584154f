"""Core module - configuration, logging, and exceptions."""

from points_ledger.core.config import Settings, get_settings
from points_ledger.core.exceptions import (
    ConflictError,
    DuplicateTransactionError,
    IdempotencyConflictError,
    InsufficientBalanceError,
    InternalError,
    InvalidRewardStateError,
    LedgerError,
    NotFoundError,
    RewardNotFoundError,
    ValidationError,
)
from points_ledger.core.logging import setup_logging

__all__ = [
    # Config
    "Settings",
    "get_settings",
    "setup_logging",
    # Exceptions
    "LedgerError",
    "ValidationError",
    "NotFoundError",
    "RewardNotFoundError",
    "InsufficientBalanceError",
    "IdempotencyConflictError",
    "InvalidRewardStateError",
    "ConflictError",
    "DuplicateTransactionError",
    "InternalError",
]
