"""Owner-facing plan status changes and the status view."""

import logging
import time
from typing import Callable, Dict, List, Optional

from eth_utils import is_address

from core.cadence import next_execution_at
from core.models import AuthorizationPurpose, Plan, PlanStatus
from execution_engine.errors import InputValidationError, PlanNotFoundError, StatusTransitionError
from execution_engine.orchestrator import validate_plan_id
from plan_store.store import PlanStore

from .modes import TRANSITIONS, StatusDecision, parse_action

logger = logging.getLogger(__name__)

RECENT_EXECUTIONS = 10


class PlanStatusController:
    def __init__(self, store: PlanStore, clock: Optional[Callable[[], int]] = None) -> None:
        self._store = store
        self._clock = clock or (lambda: int(time.time()))

    def set_plan_status(self, plan_id: object, owner: str, action: object) -> StatusDecision:
        """Pause, resume, or cancel an owner's plan; cancellation is final."""

        plan_id = validate_plan_id(plan_id)
        owner = _validate_owner(owner)
        plan_action = parse_action(action)

        plan = self._store.get_plan(plan_id)
        if plan is None or plan.owner != owner:
            raise PlanNotFoundError(f"Plan {plan_id} not found for {owner}.")

        allowed, target = TRANSITIONS[plan_action]
        if plan.status not in allowed:
            raise StatusTransitionError(
                f"Cannot {plan_action.value} plan {plan_id} while it is {plan.status.value}."
            )

        self._store.set_status(plan_id, target, self._clock())
        logger.info("Plan %s %s -> %s", plan_id, plan.status.value, target.value)
        return StatusDecision(
            plan_id=plan_id, action=plan_action, previous=plan.status, current=target
        )

    def plan_status(self, owner: str, limit: int = RECENT_EXECUTIONS) -> Dict[str, object]:
        owner = _validate_owner(owner)
        now = self._clock()
        plans: List[Dict[str, object]] = []
        authorizations: List[Dict[str, object]] = []
        for plan in self._store.list_plans(owner):
            live = self._store.list_authorizations(plan.plan_id)
            authorizations.extend(auth.to_dict() for auth in live)
            entry = plan.to_dict()
            entry["next_execution"] = self._next_execution(plan, now)
            plans.append(entry)

        return {
            "owner": owner,
            "plans": plans,
            "executions": [
                record.to_dict() for record in self._store.list_records(owner=owner, limit=limit)
            ],
            "authorizations": authorizations,
        }

    def _next_execution(self, plan: Plan, now: int) -> Optional[int]:
        if plan.status != PlanStatus.ACTIVE:
            return None
        authorization = self._store.get_authorization(plan.plan_id, AuthorizationPurpose.SIP)
        if authorization is None or authorization.period <= 0:
            return None
        return next_execution_at(plan, authorization, now)


def _validate_owner(owner: object) -> str:
    if not isinstance(owner, str) or not is_address(owner.lower()):
        raise InputValidationError("Owner must be a 0x-prefixed address.")
    return owner.lower()

