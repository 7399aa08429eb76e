"""Blocking gateway over the SpendPermissionManager contract."""

import logging
import time
from typing import Callable, Optional

from core.models import SpendAuthorization

from .adapter import (
    encode_approve_with_signature,
    encode_is_approved,
    encode_spend,
    decode_bool,
)
from .ledger import LedgerClient, LedgerError, TransactionRevertedError
from .models import EthereumTxPayload, TxReceipt

logger = logging.getLogger(__name__)


class AuthorizationGateway:
    """Reads approval state and submits approvals and spends.

    Submissions block until the receipt arrives or ``confirmation_timeout``
    expires. A mined receipt with a failed status is raised as a revert.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        manager_address: str,
        confirmation_timeout: float = 120.0,
        read_retries: int = 2,
        read_retry_delay: float = 1.0,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        self._ledger = ledger
        self._manager_address = manager_address
        self._confirmation_timeout = confirmation_timeout
        self._read_retries = read_retries
        self._read_retry_delay = read_retry_delay
        self._sleep = sleep or time.sleep

    @property
    def manager_address(self) -> str:
        return self._manager_address

    def is_approved(self, authorization: SpendAuthorization) -> bool:
        payload = encode_is_approved(self._manager_address, authorization)
        attempt = 0
        while True:
            try:
                return decode_bool(self._ledger.call(payload.to_address, payload.data))
            except TransactionRevertedError:
                raise
            except LedgerError as exc:
                if attempt >= self._read_retries:
                    raise
                attempt += 1
                logger.warning(
                    "isApproved read failed (attempt %d/%d): %s",
                    attempt,
                    self._read_retries,
                    exc,
                )
                self._sleep(self._read_retry_delay)

    def balance_of(self, address: str) -> int:
        return self._ledger.get_balance(address)

    def submit_approval(self, authorization: SpendAuthorization) -> str:
        payload = encode_approve_with_signature(self._manager_address, authorization)
        return self._submit(payload)

    def confirm(self, tx_id: str) -> TxReceipt:
        receipt = self._ledger.await_confirmation(tx_id, self._confirmation_timeout)
        if not receipt.success:
            raise TransactionRevertedError("execution reverted", tx_id=tx_id)
        logger.debug("Transaction %s confirmed in block %s", tx_id, receipt.block_number)
        return receipt

    def approve_with_signature(self, authorization: SpendAuthorization) -> str:
        tx_id = self.submit_approval(authorization)
        self.confirm(tx_id)
        return tx_id

    def spend(self, authorization: SpendAuthorization, value: int) -> str:
        tx_id = self._submit(encode_spend(self._manager_address, authorization, value))
        self.confirm(tx_id)
        return tx_id

    def _submit(self, payload: EthereumTxPayload) -> str:
        tx_id = self._ledger.submit(payload.to_address, payload.data, payload.value_wei)
        logger.info("Submitted %s as %s", payload.method, tx_id)
        return tx_id
