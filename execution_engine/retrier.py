"""Bounded retry around spend submission, classified by revert selector."""

import logging
import time
from typing import Callable, FrozenSet, Optional

from core.models import SpendAuthorization
from execution_adapter.ethereum.adapter import (
    AFTER_SPEND_PERMISSION_END,
    BEFORE_SPEND_PERMISSION_START,
    EXCEEDED_SPEND_PERMISSION,
    UNAUTHORIZED_SPEND_PERMISSION,
    revert_selector,
)
from execution_adapter.ethereum.gateway import AuthorizationGateway
from execution_adapter.ethereum.ledger import LedgerError, TransactionRevertedError

from .errors import (
    AllowanceExhaustedError,
    AuthorizationInvalidError,
    LedgerUnavailableError,
    SpendFailedError,
)

logger = logging.getLogger(__name__)

_INVALID_AUTHORIZATION_SELECTORS: FrozenSet[bytes] = frozenset(
    (
        BEFORE_SPEND_PERMISSION_START,
        AFTER_SPEND_PERMISSION_END,
        UNAUTHORIZED_SPEND_PERMISSION,
    )
)


class WithdrawalRetrier:
    def __init__(
        self,
        gateway: AuthorizationGateway,
        retries: int = 2,
        retry_delay: float = 3.0,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        self._gateway = gateway
        self._retries = retries
        self._retry_delay = retry_delay
        self._sleep = sleep or time.sleep

    def spend(self, authorization: SpendAuthorization, value: int) -> str:
        """Spend ``value``; fatal selectors fail immediately, generic reverts retry."""

        attempt = 0
        while True:
            try:
                tx_id = self._gateway.spend(authorization, value)
            except TransactionRevertedError as exc:
                selector = revert_selector(exc.revert_data)
                if selector == EXCEEDED_SPEND_PERMISSION:
                    raise AllowanceExhaustedError(
                        f"Period allowance exhausted for plan {authorization.plan_id}."
                    ) from exc
                if selector in _INVALID_AUTHORIZATION_SELECTORS:
                    raise AuthorizationInvalidError(
                        f"Authorization for plan {authorization.plan_id} rejected by the ledger."
                    ) from exc
                if attempt >= self._retries:
                    raise SpendFailedError(
                        f"Spend reverted after {attempt + 1} attempts: {exc}"
                    ) from exc
                attempt += 1
                logger.warning(
                    "Spend for plan %s reverted, retrying (%d/%d): %s",
                    authorization.plan_id,
                    attempt,
                    self._retries,
                    exc,
                )
                self._sleep(self._retry_delay)
            except LedgerError as exc:
                raise LedgerUnavailableError(f"Spend submission failed: {exc}") from exc
            else:
                logger.info("Spend confirmed for plan %s: %s", authorization.plan_id, tx_id)
                return tx_id
