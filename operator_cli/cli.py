"""Operator CLI for the SIP execution engine."""

from __future__ import annotations

import argparse
import json
import sys
from dataclasses import replace
from typing import List, Optional

from eth_utils import is_address

from core.allocation import validate_allocation
from core.models import (
    RISK_TIERS,
    Allocation,
    AuthorizationPurpose,
    Plan,
    SpendAuthorization,
)
from execution_adapter.ethereum.simulator import SimulatedLedger
from execution_controller.modes import PlanAction
from execution_engine.config import (
    NATIVE_TOKEN_ADDRESS,
    ConfigError,
    configure_logging,
    load_config,
)
from execution_engine.errors import ExecutionError, InputValidationError
from execution_engine.services import EngineServices, build_services
from plan_store.store import PlanStoreError


def main(argv: Optional[List[str]] = None, services: Optional[EngineServices] = None) -> int:
    parser = argparse.ArgumentParser(prog="sip-executor")
    parser.add_argument("--env-file", help="dotenv file loaded before the environment")
    parser.add_argument("--db", help="SQLite path, overriding SIP_DB_PATH")
    parser.add_argument(
        "--simulate",
        action="store_true",
        help="use an in-memory ledger instead of RPC_URL",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    execute_due = subparsers.add_parser("execute-due", help="run every due plan once")
    execute_due.set_defaults(func=_execute_due)

    execute = subparsers.add_parser("execute", help="run one plan now")
    execute.add_argument("--plan-id", required=True, type=int)
    execute.set_defaults(func=_execute_plan)

    rebalance = subparsers.add_parser("rebalance", help="refresh rebalancing plans' strategies")
    rebalance.set_defaults(func=_rebalance)

    status = subparsers.add_parser("status", help="show an owner's plans and history")
    status.add_argument("--owner", required=True)
    status.add_argument("--limit", type=int, default=10)
    status.set_defaults(func=_status)

    plan_parser = subparsers.add_parser("plan")
    plan_sub = plan_parser.add_subparsers(dest="plan_command", required=True)
    plan_create = plan_sub.add_parser("create")
    plan_create.add_argument("--owner", required=True)
    plan_create.add_argument("--goal", required=True)
    plan_create.add_argument("--amount", required=True, type=int, help="smallest unit per period")
    plan_create.add_argument("--risk", required=True, choices=RISK_TIERS)
    plan_create.add_argument("--allocation", required=True, help="aave/compound/uniswap, e.g. 40/30/30")
    plan_create.add_argument("--rebalancing", action="store_true")
    plan_create.set_defaults(func=_plan_create)
    for action in PlanAction:
        action_parser = plan_sub.add_parser(action.value)
        action_parser.add_argument("--plan-id", required=True, type=int)
        action_parser.add_argument("--owner", required=True)
        action_parser.set_defaults(func=_plan_action, action=action)

    auth_parser = subparsers.add_parser("authorization")
    auth_sub = auth_parser.add_subparsers(dest="authorization_command", required=True)
    auth_add = auth_sub.add_parser("add")
    auth_add.add_argument("--plan-id", required=True, type=int)
    auth_add.add_argument("--account", required=True)
    auth_add.add_argument("--spender", required=True)
    auth_add.add_argument("--token", default=NATIVE_TOKEN_ADDRESS)
    auth_add.add_argument("--allowance", required=True, type=int)
    auth_add.add_argument("--period", required=True, type=int, help="seconds")
    auth_add.add_argument("--start", required=True, type=int, help="unix seconds")
    auth_add.add_argument("--end", required=True, type=int, help="unix seconds")
    auth_add.add_argument("--salt", required=True, type=int)
    auth_add.add_argument("--signature", required=True)
    auth_add.add_argument("--extra-data", default="0x")
    auth_add.add_argument(
        "--purpose",
        choices=[purpose.value for purpose in AuthorizationPurpose],
        default=AuthorizationPurpose.SIP.value,
    )
    auth_add.set_defaults(func=_authorization_add)

    args = parser.parse_args(argv)

    try:
        args.services = services or _build(args)
        return args.func(args)
    except ExecutionError as exc:
        print(json.dumps(exc.to_dict(), indent=2), file=sys.stderr)
        return 2 if isinstance(exc, InputValidationError) else 1
    except (ValueError, ConfigError, PlanStoreError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 2


def _build(args: argparse.Namespace) -> EngineServices:
    config = load_config(args.env_file)
    if args.db:
        config = replace(config, db_path=args.db)
    configure_logging(config.log_level)
    ledger = SimulatedLedger(config.manager_address) if args.simulate else None
    return build_services(config, ledger=ledger)


def _execute_due(args: argparse.Namespace) -> int:
    summary = args.services.scheduler.execute_due()
    _print(summary.to_dict())
    return 0 if summary.failed == 0 else 1


def _execute_plan(args: argparse.Namespace) -> int:
    record = args.services.orchestrator.execute_plan(args.plan_id)
    _print(record.to_dict())
    return 0


def _rebalance(args: argparse.Namespace) -> int:
    _print(args.services.strategy.rebalance_all().to_dict())
    return 0


def _status(args: argparse.Namespace) -> int:
    _print(args.services.controller.plan_status(args.owner, limit=args.limit))
    return 0


def _plan_create(args: argparse.Namespace) -> int:
    _require_address("--owner", args.owner)
    if args.amount <= 0:
        raise ValueError("--amount must be positive.")
    allocation = _parse_allocation(args.allocation)
    now = args.services.clock()
    plan = args.services.store.create_plan(
        Plan(
            plan_id=0,
            owner=args.owner,
            goal=args.goal,
            target_amount=args.amount,
            risk_tier=args.risk,
            allocation=allocation,
            rebalancing=args.rebalancing,
            created_at=now,
            updated_at=now,
        )
    )
    _print(plan.to_dict())
    return 0


def _plan_action(args: argparse.Namespace) -> int:
    decision = args.services.controller.set_plan_status(args.plan_id, args.owner, args.action)
    _print(decision.to_dict())
    return 0


def _authorization_add(args: argparse.Namespace) -> int:
    for flag, value in (
        ("--account", args.account),
        ("--spender", args.spender),
        ("--token", args.token),
    ):
        _require_address(flag, value)
    if args.allowance <= 0 or args.period <= 0:
        raise ValueError("--allowance and --period must be positive.")
    if args.end <= args.start:
        raise ValueError("--end must be after --start.")
    if not args.signature.startswith("0x"):
        raise ValueError("--signature must be 0x-prefixed hex.")

    authorization = args.services.store.add_authorization(
        SpendAuthorization(
            authorization_id=0,
            plan_id=args.plan_id,
            account=args.account,
            spender=args.spender,
            token=args.token,
            allowance=args.allowance,
            period=args.period,
            start=args.start,
            end=args.end,
            salt=args.salt,
            signature=args.signature,
            extra_data=args.extra_data,
            purpose=AuthorizationPurpose(args.purpose),
            created_at=args.services.clock(),
        )
    )
    _print(authorization.to_dict())
    return 0


def _parse_allocation(raw: str) -> Allocation:
    parts = raw.split("/")
    if len(parts) != 3:
        raise ValueError("Allocation must be formatted as AAVE/COMPOUND/UNISWAP.")
    allocation = Allocation(*(int(part) for part in parts))
    validate_allocation(allocation)
    return allocation


def _require_address(flag: str, value: str) -> None:
    if not is_address(value.lower()):
        raise ValueError(f"{flag} must be a 0x-prefixed address.")


def _print(payload: dict) -> None:
    print(json.dumps(payload, indent=2))


if __name__ == "__main__":
    raise SystemExit(main())
