"""Invariant tests for the allocation calculator and strategy rescaling."""

import itertools
import unittest
from decimal import Decimal

from core.allocation import AllocationError, allocate, rescale
from core.models import Allocation


class AllocateTests(unittest.TestCase):
    def test_full_allowance_split(self) -> None:
        breakdown = allocate(100, Allocation(40, 30, 30))

        self.assertEqual((breakdown.aave, breakdown.compound, breakdown.uniswap), (40, 30, 30))
        self.assertEqual(breakdown.dust, 0)

    def test_capped_amount_split(self) -> None:
        breakdown = allocate(60, Allocation(40, 30, 30))

        self.assertEqual((breakdown.aave, breakdown.compound, breakdown.uniswap), (24, 18, 18))
        self.assertEqual(breakdown.dust, 0)

    def test_floor_division_leaves_dust(self) -> None:
        breakdown = allocate(10, Allocation(33, 33, 34))

        self.assertEqual((breakdown.aave, breakdown.compound, breakdown.uniswap), (3, 3, 3))
        self.assertEqual(breakdown.dust, 1)

    def test_outputs_never_exceed_amount(self) -> None:
        triples = [(p1, p2, 100 - p1 - p2) for p1 in range(0, 101, 7) for p2 in range(0, 101 - p1, 9)]
        amounts = (0, 1, 7, 99, 101, 10**18 + 3, 2**160 - 1)
        for (p1, p2, p3), amount in itertools.product(triples, amounts):
            breakdown = allocate(amount, Allocation(p1, p2, p3))
            self.assertLessEqual(breakdown.allocated(), amount)
            self.assertGreaterEqual(min(breakdown.aave, breakdown.compound, breakdown.uniswap), 0)
            self.assertEqual(breakdown.allocated() + breakdown.dust, amount)

    def test_rejects_bad_sum(self) -> None:
        with self.assertRaises(AllocationError):
            allocate(100, Allocation(40, 30, 31))

    def test_rejects_negative_inputs(self) -> None:
        with self.assertRaises(AllocationError):
            allocate(-1, Allocation(40, 30, 30))
        with self.assertRaises(AllocationError):
            allocate(100, Allocation(110, -10, 0))

    def test_rejects_non_integer_amount(self) -> None:
        with self.assertRaises(AllocationError):
            allocate(1.5, Allocation(40, 30, 30))


class RescaleTests(unittest.TestCase):
    def test_exact_triple_unchanged(self) -> None:
        self.assertEqual(rescale((50, 40, 10)), Allocation(50, 40, 10))

    def test_near_sums_forced_to_hundred(self) -> None:
        for total in range(97, 104):
            for first in range(0, total + 1, 5):
                second = (total - first) // 2
                third = total - first - second
                result = rescale((first, second, third))
                self.assertEqual(result.total(), 100, (first, second, third))
                self.assertGreaterEqual(min(result.as_tuple()), 0)

    def test_within_tolerance_remainder_on_first(self) -> None:
        self.assertEqual(rescale((33, 33, 33)), Allocation(34, 33, 33))
        self.assertEqual(rescale((34, 34, 33)), Allocation(33, 34, 33))

    def test_remainder_moves_when_first_is_zero(self) -> None:
        self.assertEqual(rescale((0, 50, 51)), Allocation(0, 50, 50))

    def test_outside_tolerance_rescaled_proportionally(self) -> None:
        result = rescale((20, 20, 10))

        self.assertEqual(result, Allocation(40, 40, 20))

    def test_fractional_values(self) -> None:
        result = rescale((33.3, Decimal("33.3"), "33.4"))

        self.assertEqual(result.total(), 100)
        self.assertEqual(result, Allocation(34, 33, 33))

    def test_rejects_malformed(self) -> None:
        for bad in ((), (50, 50), (-1, 50, 51), (0, 0, 0), ("x", 1, 2), (True, 50, 50)):
            with self.assertRaises(AllocationError):
                rescale(bad)


if __name__ == "__main__":
    unittest.main()
