"""Simulate a SpendPermissionManager ledger in memory without network calls."""

import threading
import time
from collections import defaultdict
from typing import Callable, DefaultDict, Dict, List, Optional, Set, Tuple

from eth_abi import encode
from eth_utils import keccak

from core.models import SpendAuthorization

from .adapter import (
    AFTER_SPEND_PERMISSION_END,
    APPROVE_WITH_SIGNATURE,
    BEFORE_SPEND_PERMISSION_START,
    EXCEEDED_SPEND_PERMISSION,
    IS_APPROVED,
    SPEND,
    UNAUTHORIZED_SPEND_PERMISSION,
    AdapterError,
    decode_call,
    encode_revert,
    permission_key,
    permission_tuple,
)
from .ledger import LedgerError, LedgerTimeoutError, TransactionRevertedError
from .models import SubmittedCall, TxReceipt


class SimulationError(LedgerError):
    """Raised when a simulated call is malformed or targets the wrong contract."""


_DEFAULT_GAS_USED = 21_000


class SimulatedLedger:
    """In-memory ledger that enforces spend-permission rules.

    Approvals are keyed by the permission struct; spending is metered per
    (permission, period index). Faults can be queued per method to exercise
    retry and failure paths.
    """

    def __init__(
        self,
        manager_address: str,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        self._manager = manager_address.lower()
        self._clock = clock or (lambda: int(time.time()))
        self._lock = threading.Lock()
        self._balances: Dict[str, int] = {}
        self._approved: Set[bytes] = set()
        self._spent: Dict[Tuple[bytes, int], int] = {}
        self._receipts: Dict[str, TxReceipt] = {}
        self._faults: DefaultDict[str, List[Exception]] = defaultdict(list)
        self._stale_reads = 0
        self._block_number = 0
        self.submissions: List[SubmittedCall] = []
        self.reads: List[str] = []

    def set_balance(self, address: str, amount: int) -> None:
        with self._lock:
            self._balances[address.lower()] = amount

    def balance(self, address: str) -> int:
        with self._lock:
            return self._balances.get(address.lower(), 0)

    def approve(self, authorization: SpendAuthorization) -> None:
        with self._lock:
            self._approved.add(permission_key(permission_tuple(authorization)))

    def spent_in_period(self, authorization: SpendAuthorization, now: int) -> int:
        index = (now - authorization.start) // authorization.period
        key = permission_key(permission_tuple(authorization))
        with self._lock:
            return self._spent.get((key, index), 0)

    def inject_fault(self, method: str, *errors: Exception) -> None:
        """Queue errors raised by the next calls to ``method``, in order."""

        with self._lock:
            self._faults[method].extend(errors)

    def serve_stale_reads(self, count: int) -> None:
        """Make the next ``count`` approval reads report not approved."""

        with self._lock:
            self._stale_reads = count

    def submission_count(self, method: str) -> int:
        with self._lock:
            return sum(1 for call in self.submissions if call.method == method)

    def call(self, to: str, data: str) -> bytes:
        method, args = self._decode(to, data)
        with self._lock:
            self.reads.append(method)
            self._raise_fault(method)
            if method != IS_APPROVED:
                raise SimulationError(f"{method} is not a view call.")
            approved = permission_key(args[0]) in self._approved
            if self._stale_reads > 0:
                self._stale_reads -= 1
                approved = False
        return encode(["bool"], [approved])

    def get_balance(self, address: str) -> int:
        with self._lock:
            self._raise_fault("getBalance")
            return self._balances.get(address.lower(), 0)

    def submit(self, to: str, data: str, value: int = 0) -> str:
        if value < 0:
            raise SimulationError("Transaction value must be non-negative.")
        method, args = self._decode(to, data)
        with self._lock:
            self._raise_fault(method)
            if method == APPROVE_WITH_SIGNATURE:
                self._approved.add(permission_key(args[0]))
            elif method == SPEND:
                self._apply_spend(args[0], args[1])
            else:
                raise SimulationError(f"{method} is not a state-changing call.")

            self._block_number += 1
            tx_id = "0x" + keccak(text=f"sim-tx-{len(self.submissions)}").hex()
            self.submissions.append(
                SubmittedCall(tx_id=tx_id, method=method, to_address=to, data=data, value_wei=value)
            )
            self._receipts[tx_id] = TxReceipt(
                tx_id=tx_id,
                success=True,
                block_number=self._block_number,
                gas_used=_DEFAULT_GAS_USED,
            )
            return tx_id

    def await_confirmation(self, tx_id: str, timeout: float) -> TxReceipt:
        with self._lock:
            self._raise_fault("confirm")
            receipt = self._receipts.get(tx_id)
        if receipt is None:
            raise LedgerTimeoutError(f"Transaction {tx_id} not mined within {timeout}s.")
        return receipt

    def _decode(self, to: str, data: str) -> Tuple[str, Tuple[object, ...]]:
        if not to or to.lower() != self._manager:
            raise SimulationError("Call must target the SpendPermissionManager.")
        if not data.startswith("0x"):
            raise SimulationError("Call data must be hex-prefixed.")
        try:
            return decode_call(data)
        except AdapterError as exc:
            raise SimulationError(str(exc)) from exc

    def _raise_fault(self, method: str) -> None:
        queue = self._faults.get(method)
        if queue:
            raise queue.pop(0)

    def _apply_spend(self, permission: Tuple[object, ...], value: int) -> None:
        account, spender, _, allowance, period, start, end = permission[:7]
        key = permission_key(permission)
        now = self._clock()

        if key not in self._approved:
            raise _revert(encode_revert(UNAUTHORIZED_SPEND_PERMISSION))
        if now < start:
            raise _revert(
                encode_revert(BEFORE_SPEND_PERMISSION_START, ("uint48", "uint48"), (now, start))
            )
        if now >= end:
            raise _revert(encode_revert(AFTER_SPEND_PERMISSION_END, ("uint48", "uint48"), (now, end)))

        index = (now - start) // period
        total = self._spent.get((key, index), 0) + value
        if total > allowance:
            raise _revert(
                encode_revert(EXCEEDED_SPEND_PERMISSION, ("uint256", "uint256"), (total, allowance))
            )

        owner = str(account).lower()
        if self._balances.get(owner, 0) < value:
            raise _revert(None)

        self._spent[(key, index)] = total
        self._balances[owner] -= value
        recipient = str(spender).lower()
        self._balances[recipient] = self._balances.get(recipient, 0) + value


def _revert(revert_data: Optional[str]) -> TransactionRevertedError:
    return TransactionRevertedError("execution reverted", revert_data=revert_data)
