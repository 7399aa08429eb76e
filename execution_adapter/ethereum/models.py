"""Ethereum adapter models for unsigned payloads and confirmed receipts."""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class EthereumTxPayload:
    method: str
    to_address: str
    data: str
    value_wei: int = 0


@dataclass(frozen=True)
class TxReceipt:
    tx_id: str
    success: bool
    block_number: Optional[int] = None
    gas_used: int = 0


@dataclass(frozen=True)
class SubmittedCall:
    tx_id: str
    method: str
    to_address: str
    data: str
    value_wei: int = 0
