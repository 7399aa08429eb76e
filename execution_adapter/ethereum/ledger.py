"""Ledger client protocol and the errors a ledger backend may raise."""

from typing import Optional, Protocol

from .models import TxReceipt


class LedgerError(RuntimeError):
    """Raised for any ledger failure that is not a classified revert."""


class LedgerTimeoutError(LedgerError):
    """Raised when a bounded wait on the ledger expires."""


class TransactionAlreadyKnownError(LedgerError):
    """Raised when an identical transaction is already pending or mined."""


class NonceConflictError(LedgerError):
    """Raised when the server wallet's nonce was already used by another transaction."""


class TransactionRevertedError(LedgerError):
    """Raised when a call or transaction reverts; carries the revert data."""

    def __init__(
        self,
        message: str = "execution reverted",
        revert_data: Optional[str] = None,
        tx_id: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.revert_data = revert_data
        self.tx_id = tx_id


class LedgerClient(Protocol):
    def call(self, to: str, data: str) -> bytes:
        ...

    def get_balance(self, address: str) -> int:
        ...

    def submit(self, to: str, data: str, value: int = 0) -> str:
        ...

    def await_confirmation(self, tx_id: str, timeout: float) -> TxReceipt:
        ...
