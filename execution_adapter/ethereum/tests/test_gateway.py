"""Gateway behavior against the in-memory ledger."""

import unittest
from unittest import mock

from core.models import SpendAuthorization
from execution_adapter.ethereum.adapter import (
    AFTER_SPEND_PERMISSION_END,
    BEFORE_SPEND_PERMISSION_START,
    EXCEEDED_SPEND_PERMISSION,
    UNAUTHORIZED_SPEND_PERMISSION,
    revert_selector,
)
from execution_adapter.ethereum.gateway import AuthorizationGateway
from execution_adapter.ethereum.ledger import (
    LedgerError,
    LedgerTimeoutError,
    TransactionRevertedError,
)
from execution_adapter.ethereum.models import TxReceipt
from execution_adapter.ethereum.simulator import SimulatedLedger, SimulationError

MANAGER = "0xf85210B21cC50302F477BA56686d2019dC9b67Ad"
OWNER = "0x" + "11" * 20
SPENDER = "0x" + "22" * 20
NOW = 1_700_000_000
DAY = 86_400


def _authorization(**overrides) -> SpendAuthorization:
    values = dict(
        authorization_id=1,
        plan_id=1,
        account=OWNER,
        spender=SPENDER,
        token="0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE",
        allowance=100,
        period=DAY,
        start=NOW - 10,
        end=NOW + 365 * DAY,
        salt=1,
        signature="0x" + "ab" * 65,
    )
    values.update(overrides)
    return SpendAuthorization(**values)


class GatewayTests(unittest.TestCase):
    def setUp(self) -> None:
        self.now = NOW
        self.ledger = SimulatedLedger(MANAGER, clock=lambda: self.now)
        self.ledger.set_balance(OWNER, 1_000)
        self.sleeps = []
        self.gateway = AuthorizationGateway(
            self.ledger, MANAGER, confirmation_timeout=5, sleep=self.sleeps.append
        )

    def test_approve_then_spend(self) -> None:
        auth = _authorization()
        self.assertFalse(self.gateway.is_approved(auth))

        approval_tx = self.gateway.approve_with_signature(auth)
        self.assertTrue(self.gateway.is_approved(auth))

        spend_tx = self.gateway.spend(auth, 60)
        self.assertNotEqual(approval_tx, spend_tx)
        self.assertEqual(self.ledger.balance(OWNER), 940)
        self.assertEqual(self.ledger.balance(SPENDER), 60)
        self.assertEqual(self.gateway.balance_of(OWNER), 940)

    def test_spend_without_approval_reverts_unauthorized(self) -> None:
        with self.assertRaises(TransactionRevertedError) as ctx:
            self.gateway.spend(_authorization(), 10)
        self.assertEqual(revert_selector(ctx.exception.revert_data), UNAUTHORIZED_SPEND_PERMISSION)

    def test_period_allowance_is_metered(self) -> None:
        auth = _authorization()
        self.gateway.approve_with_signature(auth)
        self.gateway.spend(auth, 70)

        with self.assertRaises(TransactionRevertedError) as ctx:
            self.gateway.spend(auth, 31)
        self.assertEqual(revert_selector(ctx.exception.revert_data), EXCEEDED_SPEND_PERMISSION)

        self.now += DAY
        self.gateway.spend(auth, 100)
        self.assertEqual(self.ledger.spent_in_period(auth, self.now), 100)

    def test_window_bounds_enforced(self) -> None:
        early = _authorization(start=NOW + 100)
        self.ledger.approve(early)
        with self.assertRaises(TransactionRevertedError) as ctx:
            self.gateway.spend(early, 1)
        self.assertEqual(revert_selector(ctx.exception.revert_data), BEFORE_SPEND_PERMISSION_START)

        expired = _authorization(end=NOW)
        self.ledger.approve(expired)
        with self.assertRaises(TransactionRevertedError) as ctx:
            self.gateway.spend(expired, 1)
        self.assertEqual(revert_selector(ctx.exception.revert_data), AFTER_SPEND_PERMISSION_END)

    def test_insufficient_owner_funds_is_generic_revert(self) -> None:
        auth = _authorization()
        self.ledger.set_balance(OWNER, 5)
        self.ledger.approve(auth)

        with self.assertRaises(TransactionRevertedError) as ctx:
            self.gateway.spend(auth, 10)
        self.assertIsNone(ctx.exception.revert_data)

    def test_read_retries_then_succeeds(self) -> None:
        auth = _authorization()
        self.ledger.approve(auth)
        self.ledger.inject_fault("isApproved", LedgerError("rpc down"), LedgerError("rpc down"))

        self.assertTrue(self.gateway.is_approved(auth))
        self.assertEqual(self.sleeps, [1.0, 1.0])

    def test_read_retries_exhausted(self) -> None:
        self.ledger.inject_fault("isApproved", *(LedgerError("rpc down") for _ in range(3)))

        with self.assertRaises(LedgerError):
            self.gateway.is_approved(_authorization())

    def test_failed_receipt_raises_revert(self) -> None:
        ledger = mock.Mock()
        ledger.submit.return_value = "0xabc"
        ledger.await_confirmation.return_value = TxReceipt(tx_id="0xabc", success=False)
        gateway = AuthorizationGateway(ledger, MANAGER, confirmation_timeout=7)

        with self.assertRaises(TransactionRevertedError) as ctx:
            gateway.spend(_authorization(), 5)
        self.assertEqual(ctx.exception.tx_id, "0xabc")
        ledger.await_confirmation.assert_called_once_with("0xabc", 7)

    def test_confirmation_timeout_propagates(self) -> None:
        self.ledger.inject_fault("confirm", LedgerTimeoutError("slow"))

        with self.assertRaises(LedgerTimeoutError):
            self.gateway.approve_with_signature(_authorization())

    def test_simulator_rejects_foreign_contract(self) -> None:
        gateway = AuthorizationGateway(self.ledger, "0x" + "33" * 20, sleep=self.sleeps.append)
        with self.assertRaises(SimulationError):
            gateway.is_approved(_authorization())


if __name__ == "__main__":
    unittest.main()
