"""Approval reconciliation: converge an authorization to the approved state."""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Tuple

from core.models import SpendAuthorization
from execution_adapter.ethereum.gateway import AuthorizationGateway
from execution_adapter.ethereum.ledger import (
    LedgerError,
    LedgerTimeoutError,
    TransactionAlreadyKnownError,
    TransactionRevertedError,
)

from .errors import ApprovalFailedError, LedgerUnavailableError

logger = logging.getLogger(__name__)


class ApprovalState(Enum):
    UNKNOWN = "unknown"
    CHECKING = "checking"
    APPROVED = "approved"
    NEEDS_APPROVAL = "needs_approval"
    APPROVING = "approving"
    CONFIRMING = "confirming"


@dataclass(frozen=True)
class ApprovalOutcome:
    state: ApprovalState
    approval_tx: Optional[str]
    transitions: Tuple[ApprovalState, ...]


class ApprovalReconciler:
    """Drives UNKNOWN -> APPROVED with bounded attempts.

    Concurrent submitters race on the same permission; "already known",
    reverted, or unconfirmed approvals are resolved by waiting and reading
    the ledger again rather than failing outright.
    """

    def __init__(
        self,
        gateway: AuthorizationGateway,
        attempts: int = 3,
        grace_seconds: float = 5.0,
        propagation_delay: float = 2.0,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        if attempts < 1:
            raise ValueError("At least one approval attempt is required.")
        self._gateway = gateway
        self._attempts = attempts
        self._grace_seconds = grace_seconds
        self._propagation_delay = propagation_delay
        self._sleep = sleep or time.sleep

    def reconcile(self, authorization: SpendAuthorization) -> ApprovalOutcome:
        transitions: List[ApprovalState] = [ApprovalState.UNKNOWN]
        approval_tx: Optional[str] = None

        for attempt in range(1, self._attempts + 1):
            transitions.append(ApprovalState.CHECKING)
            if self._is_approved(authorization):
                return _approved(approval_tx, transitions)

            transitions.extend((ApprovalState.NEEDS_APPROVAL, ApprovalState.APPROVING))
            tx_id = self._submit(authorization, attempt)
            if tx_id is None:
                self._sleep(self._grace_seconds)
                continue

            transitions.append(ApprovalState.CONFIRMING)
            if not self._confirm(tx_id, attempt):
                self._sleep(self._grace_seconds)
                continue

            approval_tx = tx_id
            # Fresh approvals may lag on the node serving reads.
            self._sleep(self._propagation_delay)
            transitions.append(ApprovalState.CHECKING)
            if self._is_approved(authorization):
                logger.info("Approval %s confirmed for plan %s", tx_id, authorization.plan_id)
                return _approved(tx_id, transitions)
            logger.warning(
                "Approval %s confirmed but not visible yet for plan %s",
                tx_id,
                authorization.plan_id,
            )

        transitions.append(ApprovalState.CHECKING)
        if self._is_approved(authorization):
            return _approved(approval_tx, transitions)
        raise ApprovalFailedError(
            f"Authorization for plan {authorization.plan_id} not approved after "
            f"{self._attempts} attempts."
        )

    def _is_approved(self, authorization: SpendAuthorization) -> bool:
        try:
            return self._gateway.is_approved(authorization)
        except LedgerError as exc:
            raise LedgerUnavailableError(f"Approval state unavailable: {exc}") from exc

    def _submit(self, authorization: SpendAuthorization, attempt: int) -> Optional[str]:
        try:
            tx_id = self._gateway.submit_approval(authorization)
        except (TransactionAlreadyKnownError, TransactionRevertedError) as exc:
            logger.warning(
                "Approval race for plan %s (attempt %d/%d): %s",
                authorization.plan_id,
                attempt,
                self._attempts,
                exc,
            )
            return None
        except LedgerError as exc:
            raise LedgerUnavailableError(f"Approval submission failed: {exc}") from exc
        logger.info("Approval submitted for plan %s: %s", authorization.plan_id, tx_id)
        return tx_id

    def _confirm(self, tx_id: str, attempt: int) -> bool:
        try:
            self._gateway.confirm(tx_id)
        except (TransactionRevertedError, LedgerTimeoutError) as exc:
            logger.warning(
                "Approval %s not confirmed (attempt %d/%d): %s",
                tx_id,
                attempt,
                self._attempts,
                exc,
            )
            return False
        except LedgerError as exc:
            raise LedgerUnavailableError(f"Approval confirmation failed: {exc}") from exc
        return True


def _approved(tx_id: Optional[str], transitions: List[ApprovalState]) -> ApprovalOutcome:
    transitions.append(ApprovalState.APPROVED)
    return ApprovalOutcome(
        state=ApprovalState.APPROVED,
        approval_tx=tx_id,
        transitions=tuple(transitions),
    )
