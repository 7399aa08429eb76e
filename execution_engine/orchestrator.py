"""End-to-end execution of one plan's periodic withdrawal."""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from core.allocation import AllocationError, allocate
from core.cadence import is_due, next_execution_at, seconds_until_due
from core.models import (
    AllocationBreakdown,
    AuthorizationPurpose,
    ExecutionRecord,
    ExecutionStatus,
    Plan,
    RebalanceNote,
    SpendAuthorization,
)
from execution_adapter.ethereum.adapter import AdapterError
from execution_adapter.ethereum.gateway import AuthorizationGateway
from execution_adapter.ethereum.ledger import LedgerError
from plan_store.store import LeaseLostError, PlanStore, PlanStoreError

from .errors import (
    AuthorizationInvalidError,
    AuthorizationNotFoundError,
    ExecutionError,
    ExecutionInProgressError,
    InputValidationError,
    InsufficientBalanceError,
    InternalExecutionError,
    LedgerUnavailableError,
    NotDueError,
    PlanInactiveError,
    PlanNotFoundError,
)
from .reconciler import ApprovalReconciler
from .retrier import WithdrawalRetrier
from .strategy import StrategyRefresher

logger = logging.getLogger(__name__)

COMMIT_ATTEMPTS = 3


@dataclass
class _Attempt:
    amount: int
    approval_tx: Optional[str] = None
    spend_tx: Optional[str] = None
    breakdown: Optional[AllocationBreakdown] = None
    rebalance: RebalanceNote = field(default_factory=RebalanceNote)


class ExecutionOrchestrator:
    """Runs validate -> lease -> refresh -> approve -> spend -> commit for one plan.

    Rejections before the lease is held write nothing. Once the lease is
    held, every failure before the spend appends a failed ExecutionRecord and
    leaves ``last_execution`` untouched so the next due check retries
    naturally. A confirmed spend is always committed and recorded as a
    success, falling back to an unleased commit when the lease is gone.
    """

    def __init__(
        self,
        store: PlanStore,
        gateway: AuthorizationGateway,
        reconciler: ApprovalReconciler,
        retrier: WithdrawalRetrier,
        strategy: StrategyRefresher,
        clock: Optional[Callable[[], int]] = None,
        lease_ttl: int = 1800,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._reconciler = reconciler
        self._retrier = retrier
        self._strategy = strategy
        self._clock = clock or (lambda: int(time.time()))
        self._lease_ttl = lease_ttl

    def execute_plan(self, plan_id: int) -> ExecutionRecord:
        plan_id = validate_plan_id(plan_id)
        now = self._clock()

        plan = self._load_plan(plan_id)
        authorization = self._store.get_authorization(plan_id, AuthorizationPurpose.SIP)
        if authorization is None:
            raise AuthorizationNotFoundError(f"Plan {plan_id} has no spend authorization.")
        self._require_due(plan, authorization, now)

        token = self._store.acquire_lease(plan_id, now, self._lease_ttl)
        if token is None:
            raise ExecutionInProgressError(f"Plan {plan_id} is already executing.")

        try:
            # Another run may have committed between the checks above and the lease.
            plan = self._load_plan(plan_id)
            self._require_due(plan, authorization, now)
            logger.info("Executing plan %s for %s", plan_id, plan.owner)
            return self._run(plan, authorization, token, now)
        finally:
            try:
                self._store.release_lease(plan_id, token)
            except PlanStoreError as exc:
                logger.warning("Lease on plan %s not released: %s", plan_id, exc)

    def _run(
        self, plan: Plan, authorization: SpendAuthorization, token: str, now: int
    ) -> ExecutionRecord:
        attempt = _Attempt(amount=plan.target_amount)
        try:
            if not authorization.is_within_window(now):
                raise AuthorizationInvalidError(
                    f"Authorization for plan {plan.plan_id} is outside its validity window."
                )

            outcome = self._strategy.refresh(plan, plan.target_amount)
            attempt.rebalance = outcome.note

            balance = self._balance_of(authorization.account)
            if balance < plan.target_amount:
                raise InsufficientBalanceError(
                    f"Balance {balance} is below the plan amount {plan.target_amount}.",
                    balance=balance,
                    required=plan.target_amount,
                )

            approval = self._reconciler.reconcile(authorization)
            attempt.approval_tx = approval.approval_tx

            attempt.amount = min(plan.target_amount, authorization.allowance)
            attempt.breakdown = allocate(attempt.amount, outcome.allocation)

            self._reassert(plan.plan_id, authorization, token)
            attempt.spend_tx = self._retrier.spend(authorization, attempt.amount)
        except (AdapterError, AllocationError) as exc:
            error = AuthorizationInvalidError(f"Plan {plan.plan_id} cannot be executed: {exc}")
            error.record = self._record_failure(plan, attempt, error, now)
            raise error from exc
        except PlanStoreError as exc:
            error = LedgerUnavailableError(f"Plan {plan.plan_id} state unavailable: {exc}")
            error.record = self._record_failure(plan, attempt, error, now)
            raise error from exc
        except ExecutionError as exc:
            exc.record = self._record_failure(plan, attempt, exc, now)
            raise
        except Exception as exc:
            logger.exception("Unexpected failure executing plan %s", plan.plan_id)
            error = InternalExecutionError(f"Plan {plan.plan_id} failed unexpectedly: {exc!r}")
            error.record = self._record_failure(plan, attempt, error, now)
            raise error from exc

        # The spend is on the ledger from here on; nothing below may report a failure.
        commit_issue = self._commit(plan.plan_id, token, attempt.amount, now)
        record = ExecutionRecord(
            plan_id=plan.plan_id,
            owner=plan.owner,
            amount=attempt.amount,
            status=ExecutionStatus.SUCCESS,
            executed_at=now,
            breakdown=attempt.breakdown,
            approval_tx=attempt.approval_tx,
            spend_tx=attempt.spend_tx,
            error=commit_issue,
            rebalance=attempt.rebalance,
        )
        try:
            record = self._store.append_record(record)
        except PlanStoreError as exc:
            logger.error(
                "Success record for plan %s (%s) not written: %s",
                plan.plan_id,
                attempt.spend_tx,
                exc,
            )
        logger.info(
            "Plan %s withdrew %s in %s (dust %s)",
            plan.plan_id,
            attempt.amount,
            attempt.spend_tx,
            attempt.breakdown.dust,
        )
        return record

    def _reassert(self, plan_id: int, authorization: SpendAuthorization, token: str) -> None:
        """Renew the lease and re-check due-ness right before money moves."""

        checked_at = self._clock()
        if not self._store.renew_lease(plan_id, token, checked_at, self._lease_ttl):
            raise ExecutionInProgressError(
                f"Lease on plan {plan_id} lapsed before spend; not spending."
            )
        self._require_due(self._load_plan(plan_id), authorization, checked_at)

    def _commit(self, plan_id: int, token: str, amount: int, now: int) -> Optional[str]:
        """Persist a confirmed spend. Returns a note when the leased commit did not land."""

        issue = ""
        for attempt in range(1, COMMIT_ATTEMPTS + 1):
            try:
                self._store.commit_execution(plan_id, token, amount, now)
                return None
            except LeaseLostError:
                issue = "lease lost before commit"
                break
            except PlanStoreError as exc:
                issue = f"commit failed: {exc}"
                logger.warning(
                    "Commit for plan %s failed (%d/%d): %s", plan_id, attempt, COMMIT_ATTEMPTS, exc
                )

        try:
            self._store.force_commit_execution(plan_id, amount, now)
        except PlanStoreError as exc:
            logger.error("Plan %s spent %s but its state was not committed: %s", plan_id, amount, exc)
            return f"{issue}; state not committed: {exc}"
        logger.warning("Plan %s committed without its lease: %s", plan_id, issue)
        return f"{issue}; committed without lease"

    def _load_plan(self, plan_id: int) -> Plan:
        plan = self._store.get_plan(plan_id)
        if plan is None:
            raise PlanNotFoundError(f"Plan {plan_id} not found.")
        if not plan.active:
            raise PlanInactiveError(f"Plan {plan_id} is {plan.status.value}.")
        return plan

    def _require_due(self, plan: Plan, authorization: SpendAuthorization, now: int) -> None:
        try:
            due = is_due(plan, authorization, now)
        except ValueError as exc:
            raise AuthorizationInvalidError(str(exc)) from exc
        if not due:
            remaining = seconds_until_due(plan, authorization, now)
            raise NotDueError(
                f"Plan {plan.plan_id} is not due for another {remaining} seconds.",
                seconds_remaining=remaining,
                next_execution=next_execution_at(plan, authorization, now),
            )

    def _balance_of(self, address: str) -> int:
        try:
            return self._gateway.balance_of(address)
        except LedgerError as exc:
            raise LedgerUnavailableError(f"Balance unavailable: {exc}") from exc

    def _record_failure(
        self, plan: Plan, attempt: _Attempt, error: ExecutionError, now: int
    ) -> Optional[ExecutionRecord]:
        logger.error(
            "Plan %s execution failed (%s): %s", plan.plan_id, error.category, error
        )
        try:
            return self._store.append_record(
                ExecutionRecord(
                    plan_id=plan.plan_id,
                    owner=plan.owner,
                    amount=attempt.amount,
                    status=ExecutionStatus.FAILED,
                    executed_at=now,
                    breakdown=attempt.breakdown,
                    approval_tx=attempt.approval_tx,
                    spend_tx=attempt.spend_tx,
                    category=error.category,
                    error=str(error),
                    rebalance=attempt.rebalance,
                )
            )
        except PlanStoreError as exc:
            logger.error("Failed record for plan %s not written: %s", plan.plan_id, exc)
            return None


def validate_plan_id(plan_id: object) -> int:
    if isinstance(plan_id, bool):
        raise InputValidationError("Plan id must be a positive integer.")
    if isinstance(plan_id, str) and plan_id.strip().isdigit():
        plan_id = int(plan_id)
    if not isinstance(plan_id, int) or plan_id <= 0:
        raise InputValidationError("Plan id must be a positive integer.")
    return plan_id
