"""Explicit wiring of the engine's collaborators from configuration."""

import time
from dataclasses import dataclass
from typing import Callable, Optional

from advisory.client import HttpAdvisor
from execution_adapter.ethereum.client import Web3LedgerClient
from execution_adapter.ethereum.gateway import AuthorizationGateway
from execution_adapter.ethereum.ledger import LedgerClient
from execution_controller.controller import PlanStatusController
from execution_controller.scheduler import PlanScheduler
from plan_store.store import PlanStore, SqlitePlanStore

from .config import ConfigError, EngineConfig, check_lease_budget
from .orchestrator import ExecutionOrchestrator
from .reconciler import ApprovalReconciler
from .retrier import WithdrawalRetrier
from .strategy import Advisor, AdvisoryPayment, StrategyRefresher


@dataclass(frozen=True)
class EngineServices:
    config: EngineConfig
    store: PlanStore
    ledger: LedgerClient
    gateway: AuthorizationGateway
    strategy: StrategyRefresher
    orchestrator: ExecutionOrchestrator
    scheduler: PlanScheduler
    controller: PlanStatusController
    clock: Callable[[], int]


def build_services(
    config: EngineConfig,
    ledger: Optional[LedgerClient] = None,
    advisor: Optional[Advisor] = None,
    store: Optional[PlanStore] = None,
    clock: Optional[Callable[[], int]] = None,
    sleep: Optional[Callable[[float], None]] = None,
) -> EngineServices:
    check_lease_budget(config)
    clock = clock or (lambda: int(time.time()))
    if ledger is None:
        if not config.rpc_url or not config.private_key:
            raise ConfigError("RPC_URL and SERVER_WALLET_PRIVATE_KEY are required.")
        ledger = Web3LedgerClient(config.rpc_url, config.private_key)
    store = store if store is not None else SqlitePlanStore(config.db_path)
    if advisor is None and config.advisory_url:
        advisor = HttpAdvisor(config.advisory_url, timeout=config.advisory_timeout)

    gateway = AuthorizationGateway(
        ledger,
        config.manager_address,
        confirmation_timeout=config.confirmation_timeout,
        sleep=sleep,
    )
    reconciler = ApprovalReconciler(
        gateway,
        attempts=config.approval_attempts,
        grace_seconds=config.approval_grace_seconds,
        propagation_delay=config.propagation_delay,
        sleep=sleep,
    )
    retrier = WithdrawalRetrier(
        gateway,
        retries=config.spend_retries,
        retry_delay=config.spend_retry_delay,
        sleep=sleep,
    )
    payment = AdvisoryPayment(store, reconciler, retrier, config.advisory_fee, clock)
    strategy = StrategyRefresher(store, advisor, clock, payment=payment)
    orchestrator = ExecutionOrchestrator(
        store,
        gateway,
        reconciler,
        retrier,
        strategy,
        clock=clock,
        lease_ttl=config.lease_ttl,
    )
    return EngineServices(
        config=config,
        store=store,
        ledger=ledger,
        gateway=gateway,
        strategy=strategy,
        orchestrator=orchestrator,
        scheduler=PlanScheduler(store, orchestrator, clock, max_workers=config.scheduler_workers),
        controller=PlanStatusController(store, clock),
        clock=clock,
    )
