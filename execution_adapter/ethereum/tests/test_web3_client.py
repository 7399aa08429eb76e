"""Error translation tests for the web3-backed ledger client; no network."""

import threading
import unittest
from unittest import mock

import requests
from web3.exceptions import ContractLogicError, TimeExhausted

from execution_adapter.ethereum.adapter import EXCEEDED_SPEND_PERMISSION, encode_revert, revert_selector
from execution_adapter.ethereum.client import Web3LedgerClient
from execution_adapter.ethereum.ledger import (
    LedgerError,
    LedgerTimeoutError,
    NonceConflictError,
    TransactionAlreadyKnownError,
    TransactionRevertedError,
)

PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
MANAGER = "0xf85210B21cC50302F477BA56686d2019dC9b67Ad"


class Web3LedgerClientTests(unittest.TestCase):
    def setUp(self) -> None:
        self.client = Web3LedgerClient("http://127.0.0.1:8545", PRIVATE_KEY, poll_latency=0.5)
        self.w3 = mock.Mock()
        self.client._w3 = self.w3

    def test_call_returns_raw_bytes(self) -> None:
        self.w3.eth.call.return_value = b"\x00" * 31 + b"\x01"

        self.assertEqual(self.client.call(MANAGER.lower(), "0x1234"), b"\x00" * 31 + b"\x01")
        request = self.w3.eth.call.call_args[0][0]
        self.assertEqual(request["to"], MANAGER)

    def test_submit_signs_and_sends(self) -> None:
        self.w3.eth.get_transaction_count.return_value = 3
        self.w3.eth.chain_id = 84532
        self.w3.eth.estimate_gas.return_value = 100_000
        self.w3.eth.gas_price = 1_000_000
        self.w3.eth.send_raw_transaction.return_value = b"\x12" * 32

        tx_id = self.client.submit(MANAGER, "0x1234")

        self.assertEqual(tx_id, "0x" + "12" * 32)
        self.w3.eth.get_transaction_count.assert_called_once_with(self.client.address, "pending")
        self.w3.eth.send_raw_transaction.assert_called_once()

    def test_contract_revert_keeps_data(self) -> None:
        data = encode_revert(EXCEEDED_SPEND_PERMISSION, ("uint256", "uint256"), (2, 1))
        self.w3.eth.call.side_effect = ContractLogicError("execution reverted", data=data)

        with self.assertRaises(TransactionRevertedError) as ctx:
            self.client.call(MANAGER, "0x1234")
        self.assertEqual(revert_selector(ctx.exception.revert_data), EXCEEDED_SPEND_PERMISSION)

    def test_already_known_classified(self) -> None:
        self.w3.eth.get_transaction_count.return_value = 0
        self.w3.eth.chain_id = 84532
        self.w3.eth.estimate_gas.return_value = 50_000
        self.w3.eth.gas_price = 1
        self.w3.eth.send_raw_transaction.side_effect = ValueError({"code": -32000, "message": "already known"})

        with self.assertRaises(TransactionAlreadyKnownError):
            self.client.submit(MANAGER, "0x1234")

    def _stub_signing(self) -> mock.Mock:
        account = mock.Mock(address=self.client.address)
        account.sign_transaction.return_value = mock.Mock(raw_transaction=b"\x01")
        self.client._account = account
        self.w3.eth.chain_id = 84532
        self.w3.eth.estimate_gas.return_value = 21_000
        self.w3.eth.gas_price = 1
        self.w3.eth.send_raw_transaction.return_value = b"\x34" * 32
        return account

    @staticmethod
    def _signed_nonces(account: mock.Mock) -> list:
        return [call.args[0]["nonce"] for call in account.sign_transaction.call_args_list]

    def test_back_to_back_submits_use_successive_nonces(self) -> None:
        account = self._stub_signing()
        # The node has not seen the first transaction yet.
        self.w3.eth.get_transaction_count.return_value = 3

        self.client.submit(MANAGER, "0x01")
        self.client.submit(MANAGER, "0x02")

        self.assertEqual(self._signed_nonces(account), [3, 4])

    def test_concurrent_submits_never_share_a_nonce(self) -> None:
        account = self._stub_signing()
        self.w3.eth.get_transaction_count.return_value = 7
        barrier = threading.Barrier(4)

        def submit() -> None:
            barrier.wait()
            self.client.submit(MANAGER, "0x01")

        threads = [threading.Thread(target=submit) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(sorted(self._signed_nonces(account)), [7, 8, 9, 10])

    def test_used_nonce_resyncs_from_node(self) -> None:
        account = self._stub_signing()
        self.w3.eth.get_transaction_count.side_effect = [5, 6]
        self.w3.eth.send_raw_transaction.side_effect = [
            ValueError({"code": -32000, "message": "nonce too low: next nonce 6, tx nonce 5"}),
            b"\x56" * 32,
        ]

        with self.assertLogs("execution_adapter.ethereum.client", level="WARNING"):
            tx_id = self.client.submit(MANAGER, "0x01")

        self.assertEqual(tx_id, "0x" + "56" * 32)
        self.assertEqual(self._signed_nonces(account), [5, 6])

    def test_nonce_collision_is_not_already_known(self) -> None:
        self._stub_signing()
        self.w3.eth.get_transaction_count.return_value = 2
        self.w3.eth.send_raw_transaction.side_effect = ValueError(
            "replacement transaction underpriced"
        )

        with self.assertLogs("execution_adapter.ethereum.client", level="WARNING"):
            with self.assertRaises(NonceConflictError) as ctx:
                self.client.submit(MANAGER, "0x01")

        self.assertNotIsInstance(ctx.exception, TransactionAlreadyKnownError)
        self.assertEqual(self.w3.eth.send_raw_transaction.call_count, 2)

    def test_network_errors_become_ledger_errors(self) -> None:
        self.w3.eth.get_balance.side_effect = requests.ConnectionError("refused")

        with self.assertRaises(LedgerError):
            self.client.get_balance(MANAGER)

    def test_confirmation_timeout(self) -> None:
        self.w3.eth.wait_for_transaction_receipt.side_effect = TimeExhausted("slow")

        with self.assertRaises(LedgerTimeoutError):
            self.client.await_confirmation("0xabc", 3)
        self.w3.eth.wait_for_transaction_receipt.assert_called_once_with(
            "0xabc", timeout=3, poll_latency=0.5
        )

    def test_receipt_status_mapped(self) -> None:
        self.w3.eth.wait_for_transaction_receipt.return_value = {
            "status": 0,
            "blockNumber": 10,
            "gasUsed": 42_000,
        }

        receipt = self.client.await_confirmation("0xabc", 3)

        self.assertFalse(receipt.success)
        self.assertEqual(receipt.block_number, 10)
        self.assertEqual(receipt.gas_used, 42_000)


if __name__ == "__main__":
    unittest.main()
