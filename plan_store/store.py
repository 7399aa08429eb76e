"""SQLite persistence for plans, spend authorizations, and execution history."""

import json
import logging
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path
from typing import Iterator, List, Optional, Protocol, Tuple, Union

from core.models import (
    Allocation,
    AllocationBreakdown,
    AuthorizationPurpose,
    ExecutionRecord,
    ExecutionStatus,
    Plan,
    PlanStatus,
    RebalanceNote,
    SchedulerRun,
    SpendAuthorization,
)

logger = logging.getLogger(__name__)

SCHEMA_DDL = """
CREATE TABLE IF NOT EXISTS plans (
    plan_id INTEGER PRIMARY KEY AUTOINCREMENT,
    owner TEXT NOT NULL,
    goal TEXT NOT NULL,
    target_amount TEXT NOT NULL,
    risk_tier TEXT NOT NULL,
    strategy_aave INTEGER NOT NULL,
    strategy_compound INTEGER NOT NULL,
    strategy_uniswap INTEGER NOT NULL,
    rebalancing INTEGER NOT NULL DEFAULT 0,
    total_withdrawn TEXT NOT NULL DEFAULT '0',
    last_execution INTEGER,
    status TEXT NOT NULL DEFAULT 'active',
    lease_token TEXT,
    lease_expires_at INTEGER,
    created_at INTEGER NOT NULL,
    updated_at INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_plans_owner ON plans (owner);

CREATE TABLE IF NOT EXISTS spend_authorizations (
    authorization_id INTEGER PRIMARY KEY AUTOINCREMENT,
    plan_id INTEGER NOT NULL REFERENCES plans (plan_id),
    purpose TEXT NOT NULL,
    account TEXT NOT NULL,
    spender TEXT NOT NULL,
    token TEXT NOT NULL,
    allowance TEXT NOT NULL,
    period INTEGER NOT NULL,
    start_time INTEGER NOT NULL,
    end_time INTEGER NOT NULL,
    salt TEXT NOT NULL,
    extra_data TEXT NOT NULL DEFAULT '0x',
    signature TEXT NOT NULL,
    revoked INTEGER NOT NULL DEFAULT 0,
    created_at INTEGER NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_authorizations_live
    ON spend_authorizations (plan_id, purpose) WHERE revoked = 0;

CREATE TABLE IF NOT EXISTS execution_records (
    record_id INTEGER PRIMARY KEY AUTOINCREMENT,
    plan_id INTEGER NOT NULL REFERENCES plans (plan_id),
    owner TEXT NOT NULL,
    amount TEXT NOT NULL,
    status TEXT NOT NULL,
    breakdown TEXT,
    approval_tx TEXT,
    spend_tx TEXT,
    category TEXT,
    error TEXT,
    rebalance TEXT NOT NULL,
    executed_at INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_records_plan ON execution_records (plan_id, executed_at);

CREATE TABLE IF NOT EXISTS scheduler_runs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    job_type TEXT NOT NULL,
    executed_at INTEGER NOT NULL,
    plans_processed INTEGER NOT NULL,
    status TEXT NOT NULL
);
"""


class PlanStoreError(RuntimeError):
    """Raised when the store cannot satisfy a write."""


class LeaseLostError(PlanStoreError):
    """Raised when a commit is attempted without holding the plan lease."""


class PlanStore(Protocol):
    def create_plan(self, plan: Plan) -> Plan:
        ...

    def get_plan(self, plan_id: int) -> Optional[Plan]:
        ...

    def list_plans(self, owner: str) -> Tuple[Plan, ...]:
        ...

    def list_rebalancing_plans(self) -> Tuple[Plan, ...]:
        ...

    def add_authorization(self, authorization: SpendAuthorization) -> SpendAuthorization:
        ...

    def get_authorization(
        self, plan_id: int, purpose: AuthorizationPurpose
    ) -> Optional[SpendAuthorization]:
        ...

    def list_authorizations(self, plan_id: int) -> Tuple[SpendAuthorization, ...]:
        ...

    def revoke_authorization(self, authorization_id: int) -> None:
        ...

    def list_due(self, now: int) -> Tuple[Tuple[Plan, SpendAuthorization], ...]:
        ...

    def update_allocation(self, plan_id: int, allocation: Allocation, now: int) -> None:
        ...

    def set_status(self, plan_id: int, status: PlanStatus, now: int) -> None:
        ...

    def acquire_lease(self, plan_id: int, now: int, ttl: int) -> Optional[str]:
        ...

    def renew_lease(self, plan_id: int, token: str, now: int, ttl: int) -> bool:
        ...

    def release_lease(self, plan_id: int, token: str) -> None:
        ...

    def commit_execution(self, plan_id: int, token: str, amount: int, executed_at: int) -> Plan:
        ...

    def force_commit_execution(self, plan_id: int, amount: int, executed_at: int) -> Plan:
        ...

    def append_record(self, record: ExecutionRecord) -> ExecutionRecord:
        ...

    def list_records(
        self,
        plan_id: Optional[int] = None,
        owner: Optional[str] = None,
        limit: int = 10,
    ) -> Tuple[ExecutionRecord, ...]:
        ...

    def record_scheduler_run(self, run: SchedulerRun) -> None:
        ...


class SqlitePlanStore:
    """Thread-safe SQLite store shared by the scheduler's workers.

    One connection is guarded by a lock; every write runs inside a
    transaction. The per-plan lease is a conditional update on
    ``lease_token``/``lease_expires_at``.
    """

    def __init__(self, path: Union[str, Path] = ":memory:") -> None:
        if str(path) != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(str(path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._conn.executescript(SCHEMA_DDL)
        self._conn.commit()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def create_plan(self, plan: Plan) -> Plan:
        with self._write():
            cursor = self._conn.execute(
                """
                INSERT INTO plans (
                    owner, goal, target_amount, risk_tier,
                    strategy_aave, strategy_compound, strategy_uniswap,
                    rebalancing, total_withdrawn, last_execution, status,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    plan.owner.lower(),
                    plan.goal,
                    str(plan.target_amount),
                    plan.risk_tier,
                    *plan.allocation.as_tuple(),
                    int(plan.rebalancing),
                    str(plan.total_withdrawn),
                    plan.last_execution,
                    plan.status.value,
                    plan.created_at,
                    plan.updated_at or plan.created_at,
                ),
            )
            plan_id = cursor.lastrowid
        return self._require_plan(plan_id)

    def get_plan(self, plan_id: int) -> Optional[Plan]:
        with self._lock:
            row = self._conn.execute("SELECT * FROM plans WHERE plan_id = ?", (plan_id,)).fetchone()
        return _row_to_plan(row) if row else None

    def list_plans(self, owner: str) -> Tuple[Plan, ...]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM plans WHERE owner = ? ORDER BY plan_id",
                (owner.lower(),),
            ).fetchall()
        return tuple(_row_to_plan(row) for row in rows)

    def list_rebalancing_plans(self) -> Tuple[Plan, ...]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM plans WHERE status = ? AND rebalancing = 1 ORDER BY plan_id",
                (PlanStatus.ACTIVE.value,),
            ).fetchall()
        return tuple(_row_to_plan(row) for row in rows)

    def add_authorization(self, authorization: SpendAuthorization) -> SpendAuthorization:
        """Store a granted authorization, revoking any live one of the same purpose."""

        with self._write():
            if self._conn.execute(
                "SELECT 1 FROM plans WHERE plan_id = ?", (authorization.plan_id,)
            ).fetchone() is None:
                raise PlanStoreError(f"Unknown plan_id: {authorization.plan_id}")
            self._conn.execute(
                "UPDATE spend_authorizations SET revoked = 1 "
                "WHERE plan_id = ? AND purpose = ? AND revoked = 0",
                (authorization.plan_id, authorization.purpose.value),
            )
            cursor = self._conn.execute(
                """
                INSERT INTO spend_authorizations (
                    plan_id, purpose, account, spender, token, allowance, period,
                    start_time, end_time, salt, extra_data, signature, revoked, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    authorization.plan_id,
                    authorization.purpose.value,
                    authorization.account,
                    authorization.spender,
                    authorization.token,
                    str(authorization.allowance),
                    authorization.period,
                    authorization.start,
                    authorization.end,
                    str(authorization.salt),
                    authorization.extra_data,
                    authorization.signature,
                    int(authorization.revoked),
                    authorization.created_at,
                ),
            )
        return replace(authorization, authorization_id=cursor.lastrowid)

    def get_authorization(
        self, plan_id: int, purpose: AuthorizationPurpose
    ) -> Optional[SpendAuthorization]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM spend_authorizations "
                "WHERE plan_id = ? AND purpose = ? AND revoked = 0",
                (plan_id, purpose.value),
            ).fetchone()
        return _row_to_authorization(row) if row else None

    def list_authorizations(self, plan_id: int) -> Tuple[SpendAuthorization, ...]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM spend_authorizations WHERE plan_id = ? AND revoked = 0 "
                "ORDER BY authorization_id",
                (plan_id,),
            ).fetchall()
        return tuple(_row_to_authorization(row) for row in rows)

    def revoke_authorization(self, authorization_id: int) -> None:
        with self._write():
            cursor = self._conn.execute(
                "UPDATE spend_authorizations SET revoked = 1 WHERE authorization_id = ?",
                (authorization_id,),
            )
            if cursor.rowcount == 0:
                raise PlanStoreError(f"Unknown authorization_id: {authorization_id}")

    def list_due(self, now: int) -> Tuple[Tuple[Plan, SpendAuthorization], ...]:
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT p.plan_id, a.authorization_id
                FROM plans p
                JOIN spend_authorizations a
                    ON a.plan_id = p.plan_id AND a.purpose = ? AND a.revoked = 0
                WHERE p.status = ?
                    AND (p.last_execution IS NULL OR ? - p.last_execution >= a.period)
                ORDER BY p.plan_id
                """,
                (AuthorizationPurpose.SIP.value, PlanStatus.ACTIVE.value, now),
            ).fetchall()
            due: List[Tuple[Plan, SpendAuthorization]] = []
            for row in rows:
                plan = self._require_plan(row["plan_id"])
                auth_row = self._conn.execute(
                    "SELECT * FROM spend_authorizations WHERE authorization_id = ?",
                    (row["authorization_id"],),
                ).fetchone()
                due.append((plan, _row_to_authorization(auth_row)))
        return tuple(due)

    def update_allocation(self, plan_id: int, allocation: Allocation, now: int) -> None:
        with self._write():
            cursor = self._conn.execute(
                "UPDATE plans SET strategy_aave = ?, strategy_compound = ?, "
                "strategy_uniswap = ?, updated_at = ? WHERE plan_id = ?",
                (*allocation.as_tuple(), now, plan_id),
            )
            if cursor.rowcount == 0:
                raise PlanStoreError(f"Unknown plan_id: {plan_id}")

    def set_status(self, plan_id: int, status: PlanStatus, now: int) -> None:
        with self._write():
            cursor = self._conn.execute(
                "UPDATE plans SET status = ?, updated_at = ? WHERE plan_id = ?",
                (status.value, now, plan_id),
            )
            if cursor.rowcount == 0:
                raise PlanStoreError(f"Unknown plan_id: {plan_id}")

    def acquire_lease(self, plan_id: int, now: int, ttl: int) -> Optional[str]:
        """Return a lease token, or None while another run holds an unexpired lease."""

        token = uuid.uuid4().hex
        with self._write():
            cursor = self._conn.execute(
                """
                UPDATE plans SET lease_token = ?, lease_expires_at = ?
                WHERE plan_id = ? AND (lease_token IS NULL OR lease_expires_at <= ?)
                """,
                (token, now + ttl, plan_id, now),
            )
        if cursor.rowcount != 1:
            logger.debug("Lease on plan %s is held by another run", plan_id)
            return None
        return token

    def renew_lease(self, plan_id: int, token: str, now: int, ttl: int) -> bool:
        """Extend the lease if ``token`` still holds it, even past its expiry.

        Taking over an expired lease replaces the token, so a matching token
        means no other run has acquired the plan in the meantime.
        """

        with self._write():
            cursor = self._conn.execute(
                "UPDATE plans SET lease_expires_at = ? WHERE plan_id = ? AND lease_token = ?",
                (now + ttl, plan_id, token),
            )
        return cursor.rowcount == 1

    def release_lease(self, plan_id: int, token: str) -> None:
        with self._write():
            self._conn.execute(
                "UPDATE plans SET lease_token = NULL, lease_expires_at = NULL "
                "WHERE plan_id = ? AND lease_token = ?",
                (plan_id, token),
            )

    def commit_execution(self, plan_id: int, token: str, amount: int, executed_at: int) -> Plan:
        with self._write():
            row = self._conn.execute(
                "SELECT total_withdrawn FROM plans WHERE plan_id = ? AND lease_token = ?",
                (plan_id, token),
            ).fetchone()
            if row is None:
                raise LeaseLostError(f"Lease on plan {plan_id} is no longer held.")
            self._conn.execute(
                "UPDATE plans SET total_withdrawn = ?, last_execution = ?, updated_at = ? "
                "WHERE plan_id = ? AND lease_token = ?",
                (
                    str(int(row["total_withdrawn"]) + amount),
                    executed_at,
                    executed_at,
                    plan_id,
                    token,
                ),
            )
        return self._require_plan(plan_id)

    def force_commit_execution(self, plan_id: int, amount: int, executed_at: int) -> Plan:
        """Commit a confirmed withdrawal without the lease; the spend already happened."""

        with self._write():
            row = self._conn.execute(
                "SELECT total_withdrawn, last_execution FROM plans WHERE plan_id = ?",
                (plan_id,),
            ).fetchone()
            if row is None:
                raise PlanStoreError(f"Unknown plan_id: {plan_id}")
            last_execution = max(row["last_execution"] or executed_at, executed_at)
            self._conn.execute(
                "UPDATE plans SET total_withdrawn = ?, last_execution = ?, updated_at = ? "
                "WHERE plan_id = ?",
                (
                    str(int(row["total_withdrawn"]) + amount),
                    last_execution,
                    executed_at,
                    plan_id,
                ),
            )
        return self._require_plan(plan_id)

    def append_record(self, record: ExecutionRecord) -> ExecutionRecord:
        with self._write():
            cursor = self._conn.execute(
                """
                INSERT INTO execution_records (
                    plan_id, owner, amount, status, breakdown, approval_tx, spend_tx,
                    category, error, rebalance, executed_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.plan_id,
                    record.owner.lower(),
                    str(record.amount),
                    record.status.value,
                    json.dumps(record.breakdown.to_dict()) if record.breakdown else None,
                    record.approval_tx,
                    record.spend_tx,
                    record.category,
                    record.error,
                    json.dumps(record.rebalance.to_dict()),
                    record.executed_at,
                ),
            )
        return replace(record, record_id=cursor.lastrowid, owner=record.owner.lower())

    def list_records(
        self,
        plan_id: Optional[int] = None,
        owner: Optional[str] = None,
        limit: int = 10,
    ) -> Tuple[ExecutionRecord, ...]:
        clauses = []
        params: List[object] = []
        if plan_id is not None:
            clauses.append("plan_id = ?")
            params.append(plan_id)
        if owner is not None:
            clauses.append("owner = ?")
            params.append(owner.lower())
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)
        with self._lock:
            rows = self._conn.execute(
                f"SELECT * FROM execution_records {where} "
                "ORDER BY executed_at DESC, record_id DESC LIMIT ?",
                params,
            ).fetchall()
        return tuple(_row_to_record(row) for row in rows)

    def record_scheduler_run(self, run: SchedulerRun) -> None:
        with self._write():
            self._conn.execute(
                "INSERT INTO scheduler_runs (job_type, executed_at, plans_processed, status) "
                "VALUES (?, ?, ?, ?)",
                (run.job_type, run.executed_at, run.plans_processed, run.status),
            )

    def list_scheduler_runs(self, limit: int = 10) -> Tuple[SchedulerRun, ...]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM scheduler_runs ORDER BY id DESC LIMIT ?", (limit,)
            ).fetchall()
        return tuple(
            SchedulerRun(
                job_type=row["job_type"],
                executed_at=row["executed_at"],
                plans_processed=row["plans_processed"],
                status=row["status"],
            )
            for row in rows
        )

    @contextmanager
    def _write(self) -> Iterator[None]:
        with self._lock:
            try:
                with self._conn:
                    yield
            except sqlite3.Error as exc:
                raise PlanStoreError(f"Store write failed: {exc}") from exc

    def _require_plan(self, plan_id: int) -> Plan:
        with self._lock:
            row = self._conn.execute("SELECT * FROM plans WHERE plan_id = ?", (plan_id,)).fetchone()
        if row is None:
            raise PlanStoreError(f"Unknown plan_id: {plan_id}")
        return _row_to_plan(row)


def _row_to_plan(row: sqlite3.Row) -> Plan:
    return Plan(
        plan_id=row["plan_id"],
        owner=row["owner"],
        goal=row["goal"],
        target_amount=int(row["target_amount"]),
        risk_tier=row["risk_tier"],
        allocation=Allocation(
            aave=row["strategy_aave"],
            compound=row["strategy_compound"],
            uniswap=row["strategy_uniswap"],
        ),
        rebalancing=bool(row["rebalancing"]),
        total_withdrawn=int(row["total_withdrawn"]),
        last_execution=row["last_execution"],
        status=PlanStatus(row["status"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_authorization(row: sqlite3.Row) -> SpendAuthorization:
    return SpendAuthorization(
        authorization_id=row["authorization_id"],
        plan_id=row["plan_id"],
        account=row["account"],
        spender=row["spender"],
        token=row["token"],
        allowance=int(row["allowance"]),
        period=row["period"],
        start=row["start_time"],
        end=row["end_time"],
        salt=int(row["salt"]),
        signature=row["signature"],
        extra_data=row["extra_data"],
        purpose=AuthorizationPurpose(row["purpose"]),
        revoked=bool(row["revoked"]),
        created_at=row["created_at"],
    )


def _row_to_record(row: sqlite3.Row) -> ExecutionRecord:
    breakdown = json.loads(row["breakdown"]) if row["breakdown"] else None
    return ExecutionRecord(
        record_id=row["record_id"],
        plan_id=row["plan_id"],
        owner=row["owner"],
        amount=int(row["amount"]),
        status=ExecutionStatus(row["status"]),
        executed_at=row["executed_at"],
        breakdown=AllocationBreakdown(**breakdown) if breakdown else None,
        approval_tx=row["approval_tx"],
        spend_tx=row["spend_tx"],
        category=row["category"],
        error=row["error"],
        rebalance=RebalanceNote(**json.loads(row["rebalance"])),
    )
