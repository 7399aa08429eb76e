from .allocation import AllocationError, allocate, rescale, validate_allocation
from .cadence import is_due, next_execution_at, seconds_until_due
from .models import (
    ALLOCATION_TARGETS,
    RISK_TIERS,
    Allocation,
    AllocationBreakdown,
    AuthorizationPurpose,
    ExecutionRecord,
    ExecutionStatus,
    Plan,
    PlanRunResult,
    PlanStatus,
    RebalanceNote,
    RunSummary,
    SchedulerRun,
    SpendAuthorization,
)

__all__ = [
    "ALLOCATION_TARGETS",
    "RISK_TIERS",
    "Allocation",
    "AllocationBreakdown",
    "AllocationError",
    "AuthorizationPurpose",
    "ExecutionRecord",
    "ExecutionStatus",
    "Plan",
    "PlanRunResult",
    "PlanStatus",
    "RebalanceNote",
    "RunSummary",
    "SchedulerRun",
    "SpendAuthorization",
    "allocate",
    "is_due",
    "next_execution_at",
    "rescale",
    "seconds_until_due",
    "validate_allocation",
]
