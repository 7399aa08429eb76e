"""Pure allocation math for splitting withdrawals across targets."""

from decimal import ROUND_FLOOR, Decimal, InvalidOperation
from typing import List, Sequence, Union

from .models import ALLOCATION_TARGETS, Allocation, AllocationBreakdown

PERCENT_TOTAL = 100
RESCALE_TOLERANCE = 1


class AllocationError(ValueError):
    """Raised when an amount or percentage triple cannot be allocated."""


def validate_allocation(allocation: Allocation) -> None:
    values = allocation.as_tuple()
    for value in values:
        if isinstance(value, bool) or not isinstance(value, int):
            raise AllocationError("Allocation percentages must be integers.")
        if value < 0:
            raise AllocationError("Allocation percentages must be non-negative.")
    if allocation.total() != PERCENT_TOTAL:
        raise AllocationError(
            f"Allocation percentages must sum to {PERCENT_TOTAL}, got {allocation.total()}."
        )


def allocate(amount: int, allocation: Allocation) -> AllocationBreakdown:
    """Split ``amount`` by floor division; the remainder is reported as dust."""

    if isinstance(amount, bool) or not isinstance(amount, int):
        raise AllocationError("Amount must be an integer in the smallest unit.")
    if amount < 0:
        raise AllocationError("Amount must be non-negative.")
    validate_allocation(allocation)

    aave, compound, uniswap = (
        amount * percent // PERCENT_TOTAL for percent in allocation.as_tuple()
    )
    return AllocationBreakdown(
        aave=aave,
        compound=compound,
        uniswap=uniswap,
        dust=amount - (aave + compound + uniswap),
    )


def rescale(percentages: Sequence[Union[int, float, Decimal, str]]) -> Allocation:
    """Force an advisory percentage triple to sum to exactly 100.

    Sums within the tolerance are floored in place; anything further off is
    rescaled proportionally. Either way the rounding remainder lands on the
    first percentage.
    """

    if len(percentages) != len(ALLOCATION_TARGETS):
        raise AllocationError("Exactly three percentages are required.")

    values = [_to_decimal(value) for value in percentages]
    for value in values:
        if not value.is_finite() or value < 0:
            raise AllocationError("Percentages must be finite and non-negative.")

    total = sum(values, Decimal("0"))
    if total <= 0:
        raise AllocationError("Percentages must have a positive sum.")

    if total == PERCENT_TOTAL and all(value == value.to_integral_value() for value in values):
        return Allocation(*(int(value) for value in values))

    if abs(total - PERCENT_TOTAL) <= RESCALE_TOLERANCE:
        scaled = [_floor(value) for value in values]
    else:
        scaled = [_floor(value * PERCENT_TOTAL / total) for value in values]

    return Allocation(*_assign_remainder(scaled))


def _assign_remainder(values: List[int]) -> List[int]:
    remainder = PERCENT_TOTAL - sum(values)
    target = 0
    if values[target] + remainder < 0:
        target = values.index(max(values))
    values[target] += remainder
    return values


def _floor(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_FLOOR))


def _to_decimal(value: Union[int, float, Decimal, str]) -> Decimal:
    if isinstance(value, bool):
        raise AllocationError("Percentages must be numeric.")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise AllocationError(f"Invalid percentage: {value!r}") from exc
