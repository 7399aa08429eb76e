"""Optional advisory-driven strategy refresh ahead of a withdrawal."""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, List, Optional, Protocol, Sequence, Union

from core.allocation import AllocationError, rescale
from core.models import (
    Allocation,
    AuthorizationPurpose,
    Plan,
    PlanRunResult,
    RebalanceNote,
    RunSummary,
    SchedulerRun,
)
from execution_adapter.ethereum.adapter import AdapterError
from plan_store.store import PlanStore, PlanStoreError

from .errors import ADVISORY, AdvisoryError, ExecutionError
from .reconciler import ApprovalReconciler
from .retrier import WithdrawalRetrier

logger = logging.getLogger(__name__)

HORIZON = "one period"
REBALANCE_JOB = "rebalance"


@dataclass(frozen=True)
class StrategyAdvice:
    percentages: Sequence[Union[int, float, Decimal, str]]
    reasoning: str = ""


class Advisor(Protocol):
    def advise(self, amount: int, horizon: str, risk_tier: str, goal: str) -> StrategyAdvice:
        ...


@dataclass(frozen=True)
class StrategyOutcome:
    allocation: Allocation
    note: RebalanceNote


class AdvisoryPayment:
    """Pays the advisory fee from the plan's ``agent`` authorization."""

    def __init__(
        self,
        store: PlanStore,
        reconciler: ApprovalReconciler,
        retrier: WithdrawalRetrier,
        fee: int,
        clock: Callable[[], int],
    ) -> None:
        self._store = store
        self._reconciler = reconciler
        self._retrier = retrier
        self._fee = fee
        self._clock = clock

    def pay(self, plan: Plan) -> Optional[str]:
        """Return a note for the rebalance reason, or None when no fee applies."""

        if self._fee <= 0:
            return None
        authorization = self._store.get_authorization(plan.plan_id, AuthorizationPurpose.AGENT)
        if authorization is None:
            return None
        if not authorization.is_usable(self._clock()):
            logger.warning("Agent authorization for plan %s is not usable", plan.plan_id)
            return "advisory fee skipped: agent authorization not usable"

        value = min(self._fee, authorization.allowance)
        try:
            self._reconciler.reconcile(authorization)
            tx_id = self._retrier.spend(authorization, value)
        except ExecutionError as exc:
            logger.warning(
                "Advisory fee for plan %s not paid (%s): %s", plan.plan_id, exc.category, exc
            )
            return f"advisory fee not paid ({exc.category})"
        except AdapterError as exc:
            logger.warning("Advisory fee for plan %s not encodable: %s", plan.plan_id, exc)
            return "advisory fee not paid (malformed agent authorization)"
        logger.info("Advisory fee %s paid for plan %s: %s", value, plan.plan_id, tx_id)
        return f"advisory fee paid in {tx_id}"


class StrategyRefresher:
    def __init__(
        self,
        store: PlanStore,
        advisor: Optional[Advisor],
        clock: Callable[[], int],
        payment: Optional[AdvisoryPayment] = None,
    ) -> None:
        self._store = store
        self._advisor = advisor
        self._clock = clock
        self._payment = payment

    def refresh(self, plan: Plan, amount: int) -> StrategyOutcome:
        """Ask the advisor for a new triple; any failure keeps the stored one."""

        if not plan.rebalancing:
            return StrategyOutcome(plan.allocation, RebalanceNote())
        if self._advisor is None:
            return StrategyOutcome(
                plan.allocation,
                RebalanceNote(attempted=False, reason="advisory service not configured"),
            )

        payment_note = self._payment.pay(plan) if self._payment else None
        kept = _describe(plan.allocation)
        try:
            advice = self._advisor.advise(amount, HORIZON, plan.risk_tier, plan.goal)
            allocation = rescale(advice.percentages)
        except (AdvisoryError, AllocationError) as exc:
            logger.warning(
                "Advisory refresh failed for plan %s, keeping %s: %s", plan.plan_id, kept, exc
            )
            return _kept(plan, f"advisory failed: {exc}; kept {kept}", payment_note)
        except Exception as exc:
            # The withdrawal proceeds on the stored allocation whatever the advisor raises.
            logger.exception(
                "Advisor raised unexpectedly for plan %s, keeping %s", plan.plan_id, kept
            )
            return _kept(plan, f"advisory failed: {exc!r}; kept {kept}", payment_note)

        try:
            self._store.update_allocation(plan.plan_id, allocation, self._clock())
        except PlanStoreError as exc:
            logger.warning("Revised strategy for plan %s not persisted: %s", plan.plan_id, exc)
            return _kept(plan, f"revised strategy not persisted; kept {kept}", payment_note)

        logger.info("Strategy for plan %s updated to %s", plan.plan_id, _describe(allocation))
        return StrategyOutcome(
            allocation,
            RebalanceNote(
                attempted=True,
                succeeded=True,
                reason=_join(f"strategy updated to {_describe(allocation)}", payment_note),
            ),
        )

    def rebalance_all(self) -> RunSummary:
        """Refresh every active rebalancing plan without withdrawing."""

        now = self._clock()
        results: List[PlanRunResult] = []
        for plan in self._store.list_rebalancing_plans():
            note = self.refresh(plan, plan.target_amount).note
            results.append(
                PlanRunResult(
                    plan_id=plan.plan_id,
                    owner=plan.owner,
                    success=note.succeeded,
                    message=note.reason,
                    category=None if note.succeeded else ADVISORY,
                )
            )

        summary = RunSummary(job_type=REBALANCE_JOB, executed_at=now, results=tuple(results))
        logger.info(
            "Rebalance pass: %d processed, %d updated", summary.processed, summary.succeeded
        )
        try:
            self._store.record_scheduler_run(
                SchedulerRun(REBALANCE_JOB, now, summary.processed, "completed")
            )
        except PlanStoreError as exc:
            logger.warning("Rebalance audit row not written: %s", exc)
        return summary


def _kept(plan: Plan, reason: str, payment_note: Optional[str]) -> StrategyOutcome:
    return StrategyOutcome(
        plan.allocation,
        RebalanceNote(attempted=True, succeeded=False, reason=_join(reason, payment_note)),
    )


def _describe(allocation: Allocation) -> str:
    return "/".join(str(value) for value in allocation.as_tuple())


def _join(reason: str, payment_note: Optional[str]) -> str:
    return f"{reason}; {payment_note}" if payment_note else reason
