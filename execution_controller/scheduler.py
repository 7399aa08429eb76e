"""Runs every due plan once per trigger on a bounded worker pool."""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, List, Optional

from core.models import Plan, PlanRunResult, RunSummary, SchedulerRun
from execution_engine.errors import INTERNAL, ExecutionError
from execution_engine.orchestrator import ExecutionOrchestrator
from plan_store.store import PlanStore, PlanStoreError

logger = logging.getLogger(__name__)

SIP_EXECUTE_JOB = "sip-execute"


class PlanScheduler:
    """Enumerates due plans and executes them independently and unordered."""

    def __init__(
        self,
        store: PlanStore,
        orchestrator: ExecutionOrchestrator,
        clock: Optional[Callable[[], int]] = None,
        max_workers: int = 4,
    ) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1.")
        self._store = store
        self._orchestrator = orchestrator
        self._clock = clock or (lambda: int(time.time()))
        self._max_workers = max_workers

    def execute_due(self) -> RunSummary:
        now = self._clock()
        due = self._store.list_due(now)
        logger.info("%d plan(s) due for execution", len(due))

        results: List[PlanRunResult] = []
        if due:
            with ThreadPoolExecutor(max_workers=min(self._max_workers, len(due))) as pool:
                futures = [pool.submit(self._run_one, plan) for plan, _ in due]
                for future in as_completed(futures):
                    results.append(future.result())

        summary = RunSummary(job_type=SIP_EXECUTE_JOB, executed_at=now, results=tuple(results))
        logger.info(
            "Run summary: %d processed, %d succeeded, %d failed",
            summary.processed,
            summary.succeeded,
            summary.failed,
        )
        self._audit(summary)
        return summary

    def _run_one(self, plan: Plan) -> PlanRunResult:
        try:
            record = self._orchestrator.execute_plan(plan.plan_id)
        except ExecutionError as exc:
            return PlanRunResult(
                plan_id=plan.plan_id,
                owner=plan.owner,
                success=False,
                message=str(exc),
                category=exc.category,
            )
        except Exception as exc:
            # One plan's defect must not abort the rest of the run.
            logger.exception("Plan %s failed unexpectedly", plan.plan_id)
            return PlanRunResult(
                plan_id=plan.plan_id,
                owner=plan.owner,
                success=False,
                message=str(exc),
                category=INTERNAL,
            )
        return PlanRunResult(
            plan_id=plan.plan_id,
            owner=plan.owner,
            success=True,
            message=f"withdrew {record.amount} in {record.spend_tx}",
        )

    def _audit(self, summary: RunSummary) -> None:
        status = "completed" if summary.failed == 0 else "completed_with_failures"
        try:
            self._store.record_scheduler_run(
                SchedulerRun(summary.job_type, summary.executed_at, summary.processed, status)
            )
        except PlanStoreError as exc:
            logger.warning("Scheduler audit row not written: %s", exc)
