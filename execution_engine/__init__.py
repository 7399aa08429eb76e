from .config import ConfigError, EngineConfig, load_config
from .errors import (
    AdvisoryError,
    AllowanceExhaustedError,
    ApprovalFailedError,
    AuthorizationInvalidError,
    AuthorizationNotFoundError,
    ExecutionError,
    ExecutionInProgressError,
    InputValidationError,
    InsufficientBalanceError,
    LedgerUnavailableError,
    NotDueError,
    PlanInactiveError,
    PlanNotFoundError,
    SpendFailedError,
    StatusTransitionError,
)
from .orchestrator import ExecutionOrchestrator
from .reconciler import ApprovalOutcome, ApprovalReconciler, ApprovalState
from .retrier import WithdrawalRetrier
from .strategy import AdvisoryPayment, StrategyAdvice, StrategyOutcome, StrategyRefresher

__all__ = [
    "AdvisoryError",
    "AdvisoryPayment",
    "AllowanceExhaustedError",
    "ApprovalFailedError",
    "ApprovalOutcome",
    "ApprovalReconciler",
    "ApprovalState",
    "AuthorizationInvalidError",
    "AuthorizationNotFoundError",
    "ConfigError",
    "EngineConfig",
    "ExecutionError",
    "ExecutionInProgressError",
    "ExecutionOrchestrator",
    "InputValidationError",
    "InsufficientBalanceError",
    "LedgerUnavailableError",
    "NotDueError",
    "PlanInactiveError",
    "PlanNotFoundError",
    "SpendFailedError",
    "StatusTransitionError",
    "StrategyAdvice",
    "StrategyOutcome",
    "StrategyRefresher",
    "WithdrawalRetrier",
    "load_config",
]
