"""Domain schemas for recurring spend-authorization plans."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple

ALLOCATION_TARGETS: Tuple[str, ...] = ("aave", "compound", "uniswap")
RISK_TIERS: Tuple[str, ...] = ("low", "medium", "high")


class PlanStatus(Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    CANCELLED = "cancelled"


class AuthorizationPurpose(Enum):
    SIP = "sip"
    AGENT = "agent"


class ExecutionStatus(Enum):
    SUCCESS = "success"
    FAILED = "failed"


@dataclass(frozen=True)
class Allocation:
    """Percentage split across the downstream targets."""

    aave: int
    compound: int
    uniswap: int

    def as_tuple(self) -> Tuple[int, int, int]:
        return (self.aave, self.compound, self.uniswap)

    def total(self) -> int:
        return self.aave + self.compound + self.uniswap

    def to_dict(self) -> Dict[str, int]:
        return dict(zip(ALLOCATION_TARGETS, self.as_tuple()))


@dataclass(frozen=True)
class AllocationBreakdown:
    """Per-target amounts of one withdrawal, in the asset's smallest unit."""

    aave: int
    compound: int
    uniswap: int
    dust: int = 0

    def allocated(self) -> int:
        return self.aave + self.compound + self.uniswap

    def to_dict(self) -> Dict[str, int]:
        return {
            "aave": self.aave,
            "compound": self.compound,
            "uniswap": self.uniswap,
            "dust": self.dust,
        }


@dataclass(frozen=True)
class Plan:
    plan_id: int
    owner: str
    goal: str
    target_amount: int
    risk_tier: str
    allocation: Allocation
    rebalancing: bool = False
    total_withdrawn: int = 0
    last_execution: Optional[int] = None
    status: PlanStatus = PlanStatus.ACTIVE
    created_at: int = 0
    updated_at: int = 0

    @property
    def active(self) -> bool:
        return self.status == PlanStatus.ACTIVE

    def to_dict(self) -> Dict[str, object]:
        return {
            "plan_id": self.plan_id,
            "owner": self.owner,
            "goal": self.goal,
            "target_amount": str(self.target_amount),
            "risk_tier": self.risk_tier,
            "allocation": self.allocation.to_dict(),
            "rebalancing": self.rebalancing,
            "total_withdrawn": str(self.total_withdrawn),
            "last_execution": self.last_execution,
            "status": self.status.value,
            "active": self.active,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True)
class SpendAuthorization:
    """Owner-signed permission letting the spender withdraw per period.

    Amounts are integers in the token's smallest unit; times are unix
    seconds. The signature covers every field except the bookkeeping ones
    (identifiers, purpose, revocation flag, creation time).
    """

    authorization_id: int
    plan_id: int
    account: str
    spender: str
    token: str
    allowance: int
    period: int
    start: int
    end: int
    salt: int
    signature: str
    extra_data: str = "0x"
    purpose: AuthorizationPurpose = AuthorizationPurpose.SIP
    revoked: bool = False
    created_at: int = 0

    def is_within_window(self, now: int) -> bool:
        return self.start <= now < self.end

    def is_usable(self, now: int) -> bool:
        return not self.revoked and self.period > 0 and self.is_within_window(now)

    def to_dict(self) -> Dict[str, object]:
        # Signatures stay server-side.
        return {
            "authorization_id": self.authorization_id,
            "plan_id": self.plan_id,
            "purpose": self.purpose.value,
            "account": self.account,
            "spender": self.spender,
            "token": self.token,
            "allowance": str(self.allowance),
            "period": self.period,
            "start": self.start,
            "end": self.end,
            "revoked": self.revoked,
            "created_at": self.created_at,
        }


@dataclass(frozen=True)
class RebalanceNote:
    attempted: bool = False
    succeeded: bool = False
    reason: str = "rebalancing disabled"

    def to_dict(self) -> Dict[str, object]:
        return {
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class ExecutionRecord:
    """Append-only audit entry for one attempted withdrawal."""

    plan_id: int
    owner: str
    amount: int
    status: ExecutionStatus
    executed_at: int
    breakdown: Optional[AllocationBreakdown] = None
    approval_tx: Optional[str] = None
    spend_tx: Optional[str] = None
    category: Optional[str] = None
    error: Optional[str] = None
    rebalance: RebalanceNote = field(default_factory=RebalanceNote)
    record_id: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.status == ExecutionStatus.SUCCESS

    def to_dict(self) -> Dict[str, object]:
        result: Dict[str, object] = {
            "record_id": self.record_id,
            "plan_id": self.plan_id,
            "owner": self.owner,
            "amount": str(self.amount),
            "status": self.status.value,
            "executed_at": self.executed_at,
            "transactions": {
                "approval": self.approval_tx,
                "spend": self.spend_tx,
            },
            "rebalance": self.rebalance.to_dict(),
        }
        if self.breakdown is not None:
            result["breakdown"] = self.breakdown.to_dict()
        if self.category is not None:
            result["category"] = self.category
        if self.error is not None:
            result["error"] = self.error
        return result


@dataclass(frozen=True)
class SchedulerRun:
    job_type: str
    executed_at: int
    plans_processed: int
    status: str


@dataclass(frozen=True)
class PlanRunResult:
    plan_id: int
    owner: str
    success: bool
    message: str
    category: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "plan_id": self.plan_id,
            "owner": self.owner,
            "success": self.success,
            "message": self.message,
            "category": self.category,
        }


@dataclass(frozen=True)
class RunSummary:
    """Outcome of one scheduled pass over many plans."""

    job_type: str
    executed_at: int
    results: Tuple[PlanRunResult, ...] = ()

    @property
    def processed(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for result in self.results if result.success)

    @property
    def failed(self) -> int:
        return self.processed - self.succeeded

    def to_dict(self) -> Dict[str, object]:
        return {
            "job_type": self.job_type,
            "executed_at": self.executed_at,
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "results": [result.to_dict() for result in self.results],
        }
