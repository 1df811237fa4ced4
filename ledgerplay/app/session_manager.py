from __future__ import annotations

import asyncio
import hashlib
import inspect
import logging
import re
import time
from typing import Awaitable, Callable

from .cards import CardCodec
from .config import EngineSettings
from .errors import (
    ActionInProgressError,
    NoActiveSessionError,
    NotConnectedError,
    SessionFlowError,
    SubmissionError,
)
from .gateway import HttpLedgerGateway
from .models import (
    ActionKind,
    ClaimableWinningsModel,
    GameSessionModel,
    JackpotModel,
    JoinSessionRequestModel,
    PlayerStatsRecord,
    SlotsLedgerStatsModel,
    StartSessionRequestModel,
)
from .outcomes import session_message
from .ports import ACTION_CODES, GameLedger, IdentityProvider, LedgerAction
from .reconciler import SessionStateReconciler
from .session import GameSession, single_table_session_id
from .stats import JsonFileStatsStore, StatsLedger
from .submitter import TransactionSubmitter

logger = logging.getLogger(__name__)

_TABLE_ID = re.compile(r"^0x[0-9a-fA-F]{64}$")
_AMOUNT_ACTIONS = {"raise", "all_in"}


class SessionManager:
    def __init__(
        self,
        provider: IdentityProvider,
        ledger: GameLedger,
        stats: StatsLedger,
        settings: EngineSettings | None = None,
        codec: CardCodec | None = None,
    ) -> None:
        self._settings = settings or EngineSettings()
        self._provider = provider
        self._ledger = ledger
        self._stats = stats
        self._reconciler = SessionStateReconciler(
            ledger,
            stats,
            codec=codec,
            poll_interval=self._settings.poll_interval_seconds,
        )
        self._submitter = TransactionSubmitter(
            provider,
            self._reconciler,
            confirmation_timeout=self._settings.confirmation_timeout_seconds,
        )
        self._lock = asyncio.Lock()
        self._closers: list[Callable[[], Awaitable[None] | None]] = []

    @classmethod
    def from_env(cls) -> "SessionManager":
        settings = EngineSettings.from_env()
        gateway = HttpLedgerGateway.from_settings(settings)
        manager = cls(
            provider=gateway,
            ledger=gateway,
            stats=StatsLedger(JsonFileStatsStore(settings.stats_dir)),
            settings=settings,
        )
        manager._closers.append(gateway.aclose)
        return manager

    @property
    def reconciler(self) -> SessionStateReconciler:
        return self._reconciler

    async def connect(self) -> str | None:
        connect_method = getattr(self._provider, "connect", None)
        if connect_method is not None:
            result = connect_method()
            if inspect.isawaitable(result):
                await result
        return self._provider.current_account()

    async def aclose(self) -> None:
        await self._reconciler.aclose()
        for close_method in self._closers:
            result = close_method()
            if inspect.isawaitable(result):
                await result

    async def start_session(self, payload: StartSessionRequestModel) -> GameSessionModel:
        account = self._require_account()
        game = payload.game_kind
        bet = payload.bet_amount

        if game == "poker":
            session_id = self._new_table_id(payload.table_name or "table", account)
            small_blind = payload.small_blind if payload.small_blind is not None else bet / 10
            big_blind = payload.big_blind if payload.big_blind is not None else small_blind * 2
            if big_blind < small_blind:
                raise SessionFlowError("Big blind must be at least the small blind.")
            action = LedgerAction(
                game_kind=game,
                method="start_session",
                kind="start",
                session_ref=session_id,
                value=bet,
                params={
                    "buyIn": bet,
                    "maxPlayers": payload.max_players,
                    "smallBlind": small_blind,
                    "bigBlind": big_blind,
                },
            )
        else:
            session_id = single_table_session_id(game, account)
            action = LedgerAction(
                game_kind=game,
                method="start_session",
                kind="spin" if game == "slots" else "start",
                session_ref=account,
                value=bet,
            )

        session = GameSession(id=session_id, game_kind=game, account=account, bet_amount=bet)
        await self._open(session)
        return await self._submit_opening(session_id, action)

    async def join_session(self, session_id: str, payload: JoinSessionRequestModel) -> GameSessionModel:
        account = self._require_account()
        if not _TABLE_ID.match(session_id):
            raise SessionFlowError("Invalid game ID format.")
        session = GameSession(id=session_id, game_kind="poker", account=account, bet_amount=payload.buy_in)
        await self._open(session)
        action = LedgerAction(
            game_kind="poker",
            method="join_session",
            kind="join",
            session_ref=session_id,
            value=payload.buy_in,
        )
        return await self._submit_opening(session_id, action)

    async def act(self, session_id: str, action_type: ActionKind, amount: float | None = None) -> GameSessionModel:
        self._require_account()
        session = self._reconciler.find(session_id)
        if session is None:
            raise NoActiveSessionError(f"No active game: {session_id}")
        if session.is_terminal:
            # Nothing left to play; drop back to the lobby.
            await self._reconciler.forget(session_id)
            raise NoActiveSessionError(f"Game {session_id} is already {session.state}.")

        codes = ACTION_CODES.get(session.game_kind, {})
        if action_type not in codes:
            raise SessionFlowError(f"'{action_type}' is not a {session.game_kind} action.")
        if action_type == "raise" and (amount is None or amount <= 0):
            raise SessionFlowError("A raise needs a positive amount.")

        action = LedgerAction(
            game_kind=session.game_kind,
            method="act",
            kind=action_type,
            session_ref=session.ledger_ref,
            action_code=codes[action_type],
            amount=amount if action_type in _AMOUNT_ACTIONS else None,
        )
        await self._submitter.submit(session_id, action)
        return self.present(session_id)

    async def claim_winnings(self) -> str:
        account = self._require_account()
        action = LedgerAction(game_kind="poker", method="claim_winnings", kind="claim")
        receipt = await self._submitter.submit(f"poker-claim-{account.lower()}", action, reconcile=False)
        return receipt.tx_hash

    async def get_claimable_winnings(self, account: str | None = None) -> ClaimableWinningsModel:
        account = account or self._require_account()
        winnings = await self._ledger.get_claimable_winnings(account)
        return ClaimableWinningsModel(account=account, winnings=winnings)

    async def get_jackpot(self) -> JackpotModel:
        try:
            jackpot = await self._ledger.get_jackpot()
        except NoActiveSessionError:
            # Older slot ledgers keep no jackpot pool.
            logger.debug("Slots ledger reports no jackpot pool")
            jackpot = 0.0
        return JackpotModel(jackpot=jackpot)

    async def get_slots_ledger_stats(self, account: str | None = None) -> SlotsLedgerStatsModel:
        return await self._ledger.get_slots_player_stats(account or self._require_account())

    async def get_state(self, session_id: str) -> GameSessionModel:
        return self.present(session_id)

    async def refresh(self, session_id: str) -> GameSessionModel:
        await self._reconciler.reconcile(session_id)
        return self.present(session_id)

    async def end_session(self, session_id: str) -> None:
        if self._submitter.pending(session_id) is not None:
            raise ActionInProgressError(f"An action is still pending for {session_id}.")
        if await self._reconciler.forget(session_id) is None:
            raise NoActiveSessionError(f"No active game: {session_id}")
        logger.info("Session %s closed by the client", session_id)

    def get_stats(self, account: str | None = None) -> PlayerStatsRecord:
        return self._stats.get_stats(account or self._provider.current_account())

    def present(self, session_id: str) -> GameSessionModel:
        session = self._reconciler.get(session_id)
        pending = self._submitter.pending(session_id)
        model = session.to_model(
            pending_action=pending.to_model() if pending else None,
            message=session_message(session),
        )
        error = self._reconciler.last_error(session_id)
        if error is not None:
            model.sync_error = str(error)
        return model

    async def _open(self, session: GameSession) -> None:
        async with self._lock:
            if self._submitter.pending(session.id) is not None:
                raise ActionInProgressError(f"An action is already pending for {session.id}.")
            existing = self._reconciler.find(session.id)
            if existing is not None and not existing.is_terminal and not self._reconciler.is_released(session.id):
                raise SessionFlowError(f"A {session.game_kind} game is already running: {session.id}")
            if existing is not None:
                await self._reconciler.forget(session.id)
            self._reconciler.track(session)

    async def _submit_opening(self, session_id: str, action: LedgerAction) -> GameSessionModel:
        try:
            await self._submitter.submit(session_id, action)
        except SubmissionError:
            await self._reconciler.forget(session_id)
            raise
        await self._reconciler.start(session_id)
        return self.present(session_id)

    def _require_account(self) -> str:
        account = self._provider.current_account()
        if not account:
            raise NotConnectedError("Wallet not connected.")
        return account

    @staticmethod
    def _new_table_id(name: str, account: str) -> str:
        raw = f"{name}{time.time_ns()}{account}".encode("utf-8")
        return "0x" + hashlib.blake2b(raw, digest_size=32).hexdigest()


__all__ = [
    "ActionInProgressError",
    "NoActiveSessionError",
    "NotConnectedError",
    "SessionFlowError",
    "SessionManager",
]
