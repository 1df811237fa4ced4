from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from .errors import (
    ActionInProgressError,
    NetworkError,
    NotConnectedError,
    SubmissionError,
    TimedOutError,
    TransactionRevertedError,
)
from .models import ActionKind, PendingActionModel, PendingStatus
from .ports import IdentityProvider, LedgerAction, Receipt, utc_now
from .reconciler import SessionStateReconciler

logger = logging.getLogger(__name__)


@dataclass
class PendingAction:
    kind: ActionKind
    submitted_at: datetime
    status: PendingStatus = "in_flight"
    tx_hash: str | None = None

    def to_model(self) -> PendingActionModel:
        return PendingActionModel(kind=self.kind, submitted_at=self.submitted_at.isoformat(), status=self.status)


class TransactionSubmitter:
    def __init__(
        self,
        provider: IdentityProvider,
        reconciler: SessionStateReconciler,
        confirmation_timeout: float = 120.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._provider = provider
        self._reconciler = reconciler
        self._confirmation_timeout = confirmation_timeout
        self._clock = clock
        self._pending: dict[str, PendingAction] = {}

    def pending(self, key: str) -> PendingAction | None:
        return self._pending.get(key)

    async def submit(self, key: str, action: LedgerAction, reconcile: bool = True) -> Receipt:
        """Send one action and wait for the ledger to confirm it.

        ``key`` is the session id the action belongs to; only one action per key
        may be in flight. Nothing about the session changes until confirmation,
        after which the receipt's events and one immediate reconciliation pass
        are applied. Failures are raised as ``SubmissionError`` subclasses and
        are never retried here.
        """
        if not self._provider.current_account():
            raise NotConnectedError("Wallet not connected.")
        if key in self._pending:
            raise ActionInProgressError(f"An action is already pending for {key}.")

        pending_action = PendingAction(kind=action.kind, submitted_at=self._clock())
        self._pending[key] = pending_action
        try:
            receipt = await self._send(action, pending_action)
            pending_action.status = "confirmed"
        except SubmissionError:
            pending_action.status = "reverted"
            raise
        finally:
            self._pending.pop(key, None)

        logger.info("%s %s confirmed in %s", action.game_kind, action.kind, receipt.tx_hash)
        if reconcile:
            self._reconciler.enqueue_events(key, receipt.events)
            await self._reconciler.reconcile(key)
        return receipt

    async def _send(self, action: LedgerAction, pending_action: PendingAction) -> Receipt:
        try:
            pending = await self._provider.submit(action)
        except SubmissionError:
            raise
        except (OSError, asyncio.TimeoutError) as exc:
            raise NetworkError(f"Could not submit {action.kind}: {exc}") from exc

        pending_action.tx_hash = pending.tx_hash
        logger.info("Submitted %s %s as %s", action.game_kind, action.kind, pending.tx_hash)

        try:
            return await asyncio.wait_for(
                self._provider.await_confirmation(pending),
                timeout=self._confirmation_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise TimedOutError(
                f"No confirmation for {pending.tx_hash} after {self._confirmation_timeout:g}s.",
                tx_hash=pending.tx_hash,
            ) from exc
        except TransactionRevertedError as exc:
            logger.warning("%s %s reverted: %s", action.game_kind, action.kind, exc.reason or "no reason given")
            raise
        except SubmissionError:
            raise
        except OSError as exc:
            raise NetworkError(f"Lost track of {pending.tx_hash}: {exc}") from exc
