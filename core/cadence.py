"""Due-ness math: when a plan may execute again."""

from .models import Plan, SpendAuthorization


def _require_period(authorization: SpendAuthorization) -> int:
    if authorization.period <= 0:
        raise ValueError("Authorization period must be positive.")
    return authorization.period


def is_due(plan: Plan, authorization: SpendAuthorization, now: int) -> bool:
    """A plan is due when it never ran or a full authorization period elapsed."""

    period = _require_period(authorization)
    if plan.last_execution is None:
        return True
    return now - plan.last_execution >= period


def next_execution_at(plan: Plan, authorization: SpendAuthorization, now: int) -> int:
    period = _require_period(authorization)
    if plan.last_execution is None:
        return now
    return plan.last_execution + period


def seconds_until_due(plan: Plan, authorization: SpendAuthorization, now: int) -> int:
    return max(0, next_execution_at(plan, authorization, now) - now)
