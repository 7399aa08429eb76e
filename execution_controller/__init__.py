from .controller import PlanStatusController
from .modes import PlanAction, StatusDecision, parse_action
from .scheduler import PlanScheduler

__all__ = [
    "PlanAction",
    "PlanScheduler",
    "PlanStatusController",
    "StatusDecision",
    "parse_action",
]
