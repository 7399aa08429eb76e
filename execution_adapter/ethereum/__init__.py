from .adapter import (
    AdapterError,
    decode_bool,
    encode_approve_with_signature,
    encode_is_approved,
    encode_spend,
    revert_selector,
)
from .client import Web3LedgerClient
from .gateway import AuthorizationGateway
from .ledger import (
    LedgerClient,
    LedgerError,
    LedgerTimeoutError,
    NonceConflictError,
    TransactionAlreadyKnownError,
    TransactionRevertedError,
)
from .models import EthereumTxPayload, SubmittedCall, TxReceipt
from .simulator import SimulatedLedger, SimulationError

__all__ = [
    "AdapterError",
    "AuthorizationGateway",
    "EthereumTxPayload",
    "LedgerClient",
    "LedgerError",
    "LedgerTimeoutError",
    "NonceConflictError",
    "SimulatedLedger",
    "SimulationError",
    "SubmittedCall",
    "TransactionAlreadyKnownError",
    "TransactionRevertedError",
    "TxReceipt",
    "Web3LedgerClient",
    "decode_bool",
    "encode_approve_with_signature",
    "encode_is_approved",
    "encode_spend",
    "revert_selector",
]
