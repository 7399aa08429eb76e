"""JSON-RPC ledger client backed by web3 and a local signing key."""

import logging
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from eth_account import Account
from requests.exceptions import RequestException
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception

from .ledger import (
    LedgerError,
    LedgerTimeoutError,
    NonceConflictError,
    TransactionAlreadyKnownError,
    TransactionRevertedError,
)
from .models import TxReceipt

logger = logging.getLogger(__name__)

_ALREADY_KNOWN_MARKERS = ("already known", "known transaction")
_NONCE_CONFLICT_MARKERS = ("nonce too low", "replacement transaction underpriced")


class Web3LedgerClient:
    """Signs legacy transactions with the server wallet and talks to one RPC node.

    The scheduler's workers share one wallet, so nonce assignment and
    submission are serialised and the next nonce is tracked locally; the
    node's pending count can lag behind transactions sent a moment ago.
    """

    def __init__(
        self,
        rpc_url: str,
        private_key: str,
        request_timeout: float = 30.0,
        poll_latency: float = 2.0,
        gas_multiplier: float = 1.2,
    ) -> None:
        if not rpc_url:
            raise LedgerError("RPC URL is required.")
        self._w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": request_timeout}))
        self._account = Account.from_key(private_key)
        self._poll_latency = poll_latency
        self._gas_multiplier = gas_multiplier
        self._nonce_lock = threading.Lock()
        self._next_nonce: Optional[int] = None

    @property
    def address(self) -> str:
        return self._account.address

    def call(self, to: str, data: str) -> bytes:
        with _translate_errors():
            result = self._w3.eth.call({"to": Web3.to_checksum_address(to), "data": data})
        return bytes(result)

    def get_balance(self, address: str) -> int:
        with _translate_errors():
            return int(self._w3.eth.get_balance(Web3.to_checksum_address(address)))

    def submit(self, to: str, data: str, value: int = 0) -> str:
        with self._nonce_lock:
            try:
                return self._send(to, data, value)
            except NonceConflictError as exc:
                # Something outside this process used the nonce; resync once from the node.
                logger.warning("Nonce already used, resyncing from the node: %s", exc)
                self._next_nonce = None
                return self._send(to, data, value)

    def _send(self, to: str, data: str, value: int) -> str:
        with _translate_errors():
            pending = self._w3.eth.get_transaction_count(self._account.address, "pending")
            nonce = pending if self._next_nonce is None else max(pending, self._next_nonce)
            tx = {
                "from": self._account.address,
                "to": Web3.to_checksum_address(to),
                "data": data,
                "value": value,
                "nonce": nonce,
                "chainId": self._w3.eth.chain_id,
            }
            tx["gas"] = int(self._w3.eth.estimate_gas(tx) * self._gas_multiplier)
            tx["gasPrice"] = self._w3.eth.gas_price
            signed = self._account.sign_transaction(tx)
            tx_hash = self._w3.eth.send_raw_transaction(signed.raw_transaction)
        self._next_nonce = nonce + 1
        return Web3.to_hex(tx_hash)

    def await_confirmation(self, tx_id: str, timeout: float) -> TxReceipt:
        try:
            with _translate_errors():
                receipt = self._w3.eth.wait_for_transaction_receipt(
                    tx_id, timeout=timeout, poll_latency=self._poll_latency
                )
        except TimeExhausted as exc:
            raise LedgerTimeoutError(f"Transaction {tx_id} not mined within {timeout}s.") from exc
        return TxReceipt(
            tx_id=tx_id,
            success=receipt["status"] == 1,
            block_number=receipt.get("blockNumber"),
            gas_used=receipt.get("gasUsed", 0),
        )


@contextmanager
def _translate_errors() -> Iterator[None]:
    try:
        yield
    except TimeExhausted:
        raise
    except ContractLogicError as exc:
        raise TransactionRevertedError(str(exc), revert_data=_revert_data(exc)) from exc
    except (Web3Exception, ValueError) as exc:
        message = str(exc).lower()
        if any(marker in message for marker in _ALREADY_KNOWN_MARKERS):
            raise TransactionAlreadyKnownError(str(exc)) from exc
        if any(marker in message for marker in _NONCE_CONFLICT_MARKERS):
            raise NonceConflictError(str(exc)) from exc
        raise LedgerError(str(exc)) from exc
    except RequestException as exc:
        logger.warning("RPC request failed: %s", exc)
        raise LedgerError(f"RPC request failed: {exc}") from exc


def _revert_data(exc: ContractLogicError) -> Optional[str]:
    data = getattr(exc, "data", None)
    return data if isinstance(data, str) else None
