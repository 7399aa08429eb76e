"""Tests for the due-plan scheduler's isolation and summary reporting."""

import unittest

from core.models import Allocation, Plan, PlanStatus, SpendAuthorization
from execution_adapter.ethereum.gateway import AuthorizationGateway
from execution_adapter.ethereum.simulator import SimulatedLedger
from execution_controller.scheduler import PlanScheduler
from execution_engine.orchestrator import ExecutionOrchestrator
from execution_engine.reconciler import ApprovalReconciler
from execution_engine.retrier import WithdrawalRetrier
from execution_engine.strategy import StrategyRefresher
from plan_store.store import SqlitePlanStore

MANAGER = "0xf85210B21cC50302F477BA56686d2019dC9b67Ad"
RICH = "0x" + "a1" * 20
POOR = "0x" + "b2" * 20
NOW = 1_700_000_000
DAY = 86_400


class _ExplodingOrchestrator:
    def __init__(self, inner: ExecutionOrchestrator, plan_id: int) -> None:
        self._inner = inner
        self._plan_id = plan_id

    def execute_plan(self, plan_id: int):
        if plan_id == self._plan_id:
            raise KeyError("corrupt row")
        return self._inner.execute_plan(plan_id)


class PlanSchedulerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = SqlitePlanStore()
        self.ledger = SimulatedLedger(MANAGER, clock=lambda: NOW)
        self.ledger.set_balance(RICH, 1_000)
        self.ledger.set_balance(POOR, 1)
        gateway = AuthorizationGateway(self.ledger, MANAGER, sleep=lambda _: None)
        self.orchestrator = ExecutionOrchestrator(
            self.store,
            gateway,
            ApprovalReconciler(gateway, sleep=lambda _: None),
            WithdrawalRetrier(gateway, sleep=lambda _: None),
            StrategyRefresher(self.store, None, lambda: NOW),
            clock=lambda: NOW,
        )

    def tearDown(self) -> None:
        self.store.close()

    def _plan(self, owner: str, salt: int, last_execution=None) -> Plan:
        plan = self.store.create_plan(
            Plan(
                plan_id=0,
                owner=owner,
                goal="monthly savings",
                target_amount=100,
                risk_tier="medium",
                allocation=Allocation(40, 30, 30),
                last_execution=last_execution,
                created_at=NOW - DAY,
            )
        )
        self.store.add_authorization(
            SpendAuthorization(
                authorization_id=0,
                plan_id=plan.plan_id,
                account=owner,
                spender="0x" + "22" * 20,
                token="0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE",
                allowance=100,
                period=DAY,
                start=NOW - DAY,
                end=NOW + 30 * DAY,
                salt=salt,
                signature="0x" + "ab" * 65,
            )
        )
        return plan

    def test_failures_are_isolated_per_plan(self) -> None:
        ok = self._plan(RICH, salt=1)
        broke = self._plan(POOR, salt=2)

        summary = PlanScheduler(self.store, self.orchestrator, lambda: NOW).execute_due()

        by_plan = {result.plan_id: result for result in summary.results}
        self.assertEqual(summary.processed, 2)
        self.assertTrue(by_plan[ok.plan_id].success)
        self.assertTrue(by_plan[ok.plan_id].message.startswith("withdrew 100 in 0x"))
        self.assertFalse(by_plan[broke.plan_id].success)
        self.assertEqual(by_plan[broke.plan_id].category, "precondition")

        run = self.store.list_scheduler_runs()[0]
        self.assertEqual(run.job_type, "sip-execute")
        self.assertEqual(run.plans_processed, 2)
        self.assertEqual(run.status, "completed_with_failures")

    def test_only_due_active_plans_run(self) -> None:
        self._plan(RICH, salt=1, last_execution=NOW - 60)
        paused = self._plan(RICH, salt=2)
        self.store.set_status(paused.plan_id, PlanStatus.PAUSED, NOW)

        summary = PlanScheduler(self.store, self.orchestrator, lambda: NOW).execute_due()

        self.assertEqual(summary.processed, 0)
        self.assertEqual(self.ledger.submissions, [])
        self.assertEqual(self.store.list_scheduler_runs()[0].status, "completed")

    def test_unexpected_errors_do_not_abort_the_run(self) -> None:
        bad = self._plan(RICH, salt=1)
        good = self._plan(RICH, salt=2)
        orchestrator = _ExplodingOrchestrator(self.orchestrator, bad.plan_id)

        with self.assertLogs("execution_controller.scheduler", level="ERROR"):
            summary = PlanScheduler(self.store, orchestrator, lambda: NOW, max_workers=2).execute_due()

        by_plan = {result.plan_id: result for result in summary.results}
        self.assertEqual(by_plan[bad.plan_id].category, "internal")
        self.assertTrue(by_plan[good.plan_id].success)

    def test_second_trigger_in_period_finds_nothing_due(self) -> None:
        self._plan(RICH, salt=1)
        scheduler = PlanScheduler(self.store, self.orchestrator, lambda: NOW)
        scheduler.execute_due()

        summary = scheduler.execute_due()

        self.assertEqual(summary.processed, 0)
        self.assertEqual(self.ledger.submission_count("spend"), 1)

    def test_worker_count_must_be_positive(self) -> None:
        with self.assertRaises(ValueError):
            PlanScheduler(self.store, self.orchestrator, max_workers=0)


if __name__ == "__main__":
    unittest.main()
