from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import datetime
from typing import Callable, Iterable

from .cards import CardCodec
from .errors import EngineError, NetworkError, NoActiveSessionError
from .outcomes import settle
from .ports import GameLedger, LedgerEvent, Subscription, utc_now
from .session import GameSession, apply_event, merge_snapshot, same_account
from .stats import StatsLedger

logger = logging.getLogger(__name__)


class SessionStateReconciler:
    """Owns the local mirror of every tracked session.

    Confirmed actions, the periodic poll and pushed ledger events all funnel
    into ``reconcile``, which is serialized per session.
    """

    def __init__(
        self,
        ledger: GameLedger,
        stats: StatsLedger,
        codec: CardCodec | None = None,
        poll_interval: float = 5.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._ledger = ledger
        self._stats = stats
        self._codec = codec or CardCodec()
        self._poll_interval = poll_interval
        self._clock = clock
        self._sessions: dict[str, GameSession] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._queues: dict[str, list[LedgerEvent]] = {}
        self._errors: dict[str, EngineError] = {}
        self._poll_tasks: dict[str, asyncio.Task[None]] = {}
        self._event_tasks: dict[str, set[asyncio.Task[None]]] = {}
        self._subscriptions: dict[str, Subscription] = {}
        self._released: set[str] = set()

    def track(self, session: GameSession) -> None:
        if session.id in self._sessions and not self.is_released(session.id):
            raise ValueError(f"Session already tracked: {session.id}")
        self._sessions[session.id] = session
        self._released.discard(session.id)
        self._queues.pop(session.id, None)
        self._errors.pop(session.id, None)

    def find(self, session_id: str) -> GameSession | None:
        return self._sessions.get(session_id)

    def get(self, session_id: str) -> GameSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise NoActiveSessionError(f"No active game: {session_id}")
        return session

    def is_released(self, session_id: str) -> bool:
        return session_id in self._released

    def is_scheduled(self, session_id: str) -> bool:
        task = self._poll_tasks.get(session_id)
        return task is not None and not task.done()

    def last_error(self, session_id: str) -> EngineError | None:
        return self._errors.get(session_id)

    def enqueue_events(self, session_id: str, events: Iterable[LedgerEvent]) -> None:
        if session_id in self._released or session_id not in self._sessions:
            return
        self._queues.setdefault(session_id, []).extend(events)

    async def start(self, session_id: str) -> None:
        session = self.get(session_id)
        if session_id in self._released or session.is_terminal:
            return

        if not self.is_scheduled(session_id):
            self._poll_tasks[session_id] = asyncio.create_task(self._poll(session_id), name=f"reconcile-{session_id}")

        if session_id not in self._subscriptions:
            try:
                subscription = await self._ledger.subscribe(
                    session.game_kind,
                    session.ledger_ref,
                    lambda event: self._on_event(session_id, event),
                )
            except (NetworkError, OSError) as exc:
                logger.warning("Event subscription unavailable for %s, polling only: %s", session_id, exc)
                return
            if session_id in self._released:
                await subscription.close()
                return
            self._subscriptions[session_id] = subscription

    async def reconcile(self, session_id: str) -> GameSession:
        self.get(session_id)
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        async with lock:
            current = self.get(session_id)
            if session_id in self._released:
                return current

            queued = self._queues.pop(session_id, [])
            session = current
            for event in queued:
                session = apply_event(session, event, self._codec)

            try:
                snapshot = await self._ledger.get_session_state(session.game_kind, session.ledger_ref)
                hand: list[str] = []
                if session.game_kind != "slots":
                    hand = await self._ledger.get_hand(session.game_kind, session.ledger_ref, session.account)
            except (EngineError, OSError, asyncio.TimeoutError, ValueError) as exc:
                # Keep the last good view; queued events are retried with the next pass.
                self._queues[session_id] = queued + self._queues.get(session_id, [])
                self._errors[session_id] = exc if isinstance(exc, EngineError) else NetworkError(str(exc))
                logger.warning("Reconciliation of %s failed, keeping previous state: %s", session_id, exc)
                return current

            session = merge_snapshot(session, snapshot, hand, self._codec, self._clock())
            self._errors.pop(session_id, None)
            session = await self._record_completion(session)
            self._sessions[session_id] = session

            if session.state != current.state:
                logger.info("Session %s moved %s -> %s", session_id, current.state, session.state)
            if session.is_terminal:
                await self.release(session_id)
            return session

    async def release(self, session_id: str) -> None:
        """Stop polling and event delivery for a session; later passes become no-ops."""
        self._released.add(session_id)
        self._queues.pop(session_id, None)

        current = asyncio.current_task()
        tasks: list[asyncio.Task] = []
        poll_task = self._poll_tasks.pop(session_id, None)
        if poll_task is not None:
            tasks.append(poll_task)
        tasks.extend(self._event_tasks.pop(session_id, set()))
        others = [task for task in tasks if task is not current and not task.done()]
        for task in others:
            task.cancel()

        subscription = self._subscriptions.pop(session_id, None)
        if subscription is not None:
            try:
                await subscription.close()
            except (EngineError, OSError) as exc:
                logger.warning("Closing event subscription for %s failed: %s", session_id, exc)

        if others:
            await asyncio.gather(*others, return_exceptions=True)
        logger.debug("Released session %s", session_id)

    async def forget(self, session_id: str) -> GameSession | None:
        await self.release(session_id)
        self._locks.pop(session_id, None)
        self._errors.pop(session_id, None)
        return self._sessions.pop(session_id, None)

    async def aclose(self) -> None:
        for session_id in list(self._sessions):
            await self.release(session_id)

    async def _record_completion(self, session: GameSession) -> GameSession:
        if session.state != "completed" or session.stats_recorded:
            return session

        session = replace(session, stats_recorded=True)
        outcome, winnings = settle(session)
        try:
            await self._stats.record_completion(
                session.account,
                session.game_kind,
                outcome,
                session.bet_amount,
                winnings,
            )
        except (OSError, ValueError):
            logger.exception("Could not record %s result for session %s", session.game_kind, session.id)
        else:
            logger.info("Recorded %s %s for %s", session.game_kind, outcome, session.account)
        return session

    async def _poll(self, session_id: str) -> None:
        while session_id not in self._released:
            await asyncio.sleep(self._poll_interval)
            try:
                session = await self.reconcile(session_id)
            except NoActiveSessionError:
                return
            if session.is_terminal:
                return

    async def _on_event(self, session_id: str, event: LedgerEvent) -> None:
        session = self._sessions.get(session_id)
        if session is None or session_id in self._released:
            return
        if event.session_ref != session.ledger_ref and not same_account(event.session_ref, session.ledger_ref):
            return

        self.enqueue_events(session_id, [event])
        # Run outside the subscription's own task so releasing can close it.
        task = asyncio.create_task(self._reconcile_for_event(session_id), name=f"event-{session_id}")
        tasks = self._event_tasks.setdefault(session_id, set())
        tasks.add(task)
        task.add_done_callback(tasks.discard)

    async def _reconcile_for_event(self, session_id: str) -> None:
        try:
            await self.reconcile(session_id)
        except NoActiveSessionError:
            logger.debug("Event for %s arrived after the session was dropped", session_id)
