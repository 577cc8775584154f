"""Points Ledger Service Layer.

The ledger service is the only component allowed to mutate balances or the
transaction log; the other services here are its building blocks or thin
domain wrappers over it.
"""

from points_ledger.services.backfill_queue import BackfillQueue
from points_ledger.services.balance_store import BalanceStore, DebitResult
from points_ledger.services.ledger_service import (
    LedgerResult,
    LedgerService,
    ReconciliationReport,
    TransactionRefs,
)
from points_ledger.services.pricing_service import (
    ACTION_COSTS,
    ActionType,
    calculate_sms_credits,
    estimate_campaign_cost,
    get_action_cost,
)
from points_ledger.services.reward_service import RewardGranter
from points_ledger.services.transaction_log import (
    TransactionEntry,
    TransactionFilters,
    TransactionLog,
    TransactionSummary,
)

__all__ = [
    "ACTION_COSTS",
    "ActionType",
    "BackfillQueue",
    "BalanceStore",
    "DebitResult",
    "LedgerResult",
    "LedgerService",
    "ReconciliationReport",
    "RewardGranter",
    "TransactionEntry",
    "TransactionFilters",
    "TransactionLog",
    "TransactionRefs",
    "TransactionSummary",
    "calculate_sms_credits",
    "estimate_campaign_cost",
    "get_action_cost",
]
