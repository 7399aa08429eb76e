"""Plan status actions and the transitions they allow."""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Tuple

from core.models import PlanStatus
from execution_engine.errors import InputValidationError


class PlanAction(Enum):
    PAUSE = "pause"
    RESUME = "resume"
    CANCEL = "cancel"


# action -> (statuses it may leave, status it enters); cancelled is terminal.
TRANSITIONS: Dict[PlanAction, Tuple[FrozenSet[PlanStatus], PlanStatus]] = {
    PlanAction.PAUSE: (frozenset({PlanStatus.ACTIVE}), PlanStatus.PAUSED),
    PlanAction.RESUME: (frozenset({PlanStatus.PAUSED}), PlanStatus.ACTIVE),
    PlanAction.CANCEL: (frozenset({PlanStatus.ACTIVE, PlanStatus.PAUSED}), PlanStatus.CANCELLED),
}


@dataclass(frozen=True)
class StatusDecision:
    plan_id: int
    action: PlanAction
    previous: PlanStatus
    current: PlanStatus

    def to_dict(self) -> Dict[str, object]:
        return {
            "plan_id": self.plan_id,
            "action": self.action.value,
            "previous": self.previous.value,
            "status": self.current.value,
        }


def parse_action(value: object) -> PlanAction:
    if isinstance(value, PlanAction):
        return value
    try:
        return PlanAction(str(value).strip().lower())
    except ValueError as exc:
        raise InputValidationError(
            f"Unknown action {value!r}; expected pause, resume, or cancel."
        ) from exc
