"""Execution failures surfaced to callers, with categories and HTTP status codes."""

from typing import Dict, Optional

from core.models import ExecutionRecord

INPUT = "input"
NOT_FOUND = "not found"
LIVENESS = "liveness"
PRECONDITION = "precondition"
TRANSIENT_APPROVAL = "transient: approval"
TRANSIENT_SPEND = "transient: spend"
TRANSIENT_LEDGER = "transient: ledger"
FATAL_ALLOWANCE_EXHAUSTED = "fatal: allowance exhausted"
FATAL_AUTHORIZATION_INVALID = "fatal: authorization invalid"
ADVISORY = "advisory"
INTERNAL = "internal"


class ExecutionError(RuntimeError):
    """Base for engine failures; carries the failed record once one is written."""

    category = TRANSIENT_LEDGER
    status_code = 500

    def __init__(self, message: str, record: Optional[ExecutionRecord] = None) -> None:
        super().__init__(message)
        self.record = record

    @property
    def retryable(self) -> bool:
        return self.category == LIVENESS or self.category.startswith("transient")

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "error": str(self),
            "category": self.category,
            "retryable": self.retryable,
        }
        if self.record is not None:
            payload["record"] = self.record.to_dict()
        return payload


class InputValidationError(ExecutionError):
    """Raised for malformed identifiers or actions."""

    category = INPUT
    status_code = 400


class StatusTransitionError(InputValidationError):
    """Raised when a plan status change is not allowed from its current state."""


class PlanNotFoundError(ExecutionError):
    """Raised when a plan does not exist or is not owned by the caller."""

    category = NOT_FOUND
    status_code = 404


class AuthorizationNotFoundError(ExecutionError):
    """Raised when a plan has no live spend authorization."""

    category = NOT_FOUND
    status_code = 404


class NotDueError(ExecutionError):
    """Raised when a plan's authorization period has not yet elapsed."""

    category = LIVENESS
    status_code = 429

    def __init__(self, message: str, seconds_remaining: int, next_execution: int) -> None:
        super().__init__(message)
        self.seconds_remaining = seconds_remaining
        self.next_execution = next_execution

    def to_dict(self) -> Dict[str, object]:
        payload = super().to_dict()
        payload["seconds_remaining"] = self.seconds_remaining
        payload["next_execution"] = self.next_execution
        return payload


class ExecutionInProgressError(ExecutionError):
    """Raised when another run holds the plan's lease."""

    category = LIVENESS
    status_code = 429


class PlanInactiveError(ExecutionError):
    """Raised when a paused or cancelled plan is asked to execute."""

    category = PRECONDITION
    status_code = 400


class InsufficientBalanceError(ExecutionError):
    """Raised when the owner's balance cannot cover the intended amount."""

    category = PRECONDITION
    status_code = 400

    def __init__(self, message: str, balance: int, required: int) -> None:
        super().__init__(message)
        self.balance = balance
        self.required = required


class ApprovalFailedError(ExecutionError):
    category = TRANSIENT_APPROVAL


class SpendFailedError(ExecutionError):
    category = TRANSIENT_SPEND


class LedgerUnavailableError(ExecutionError):
    category = TRANSIENT_LEDGER


class AllowanceExhaustedError(ExecutionError):
    """Raised when the period allowance is already consumed; never retried."""

    category = FATAL_ALLOWANCE_EXHAUSTED


class AuthorizationInvalidError(ExecutionError):
    """Raised when the authorization is outside its window, revoked, or malformed."""

    category = FATAL_AUTHORIZATION_INVALID


class InternalExecutionError(ExecutionError):
    """Raised when an unexpected exception interrupts a run before any spend."""

    category = INTERNAL


class AdvisoryError(ExecutionError):
    """Raised by advisory clients; the engine falls back instead of surfacing it."""

    category = ADVISORY
    status_code = 502
