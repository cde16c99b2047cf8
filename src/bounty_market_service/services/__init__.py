"""Service layer components."""

from bounty_market_service.services.deadline_evaluator import DeadlineEvaluator
from bounty_market_service.services.escrow_accountant import EscrowAccountant, Settlement
from bounty_market_service.services.indexed_set import IndexedSetStore
from bounty_market_service.services.payout_coordinator import OutboundBatch, PayoutCoordinator
from bounty_market_service.services.storage_meter import SqliteStorageMeter
from bounty_market_service.services.submission_ledger import SubmissionLedger
from bounty_market_service.services.task_manager import TaskManager
from bounty_market_service.services.task_store import TaskStore
from bounty_market_service.services.token_validator import TokenValidator

__all__ = [
    "DeadlineEvaluator",
    "EscrowAccountant",
    "IndexedSetStore",
    "OutboundBatch",
    "PayoutCoordinator",
    "Settlement",
    "SqliteStorageMeter",
    "SubmissionLedger",
    "TaskManager",
    "TaskStore",
    "TokenValidator",
]
