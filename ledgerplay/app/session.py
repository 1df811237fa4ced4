from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace
from datetime import datetime

from .cards import Card, CardCodec
from .models import (
    CompletionModel,
    GameKind,
    GameSessionModel,
    OutcomeMessageModel,
    PendingActionModel,
    PublicFieldsModel,
    ReelResultModel,
    SessionStateName,
)
from .payout import preview_multiplier, symbol_display
from .ports import LedgerEvent, LedgerSnapshot

logger = logging.getLogger(__name__)

STATE_RANK: dict[str, int] = {"waiting": 0, "active": 1, "completed": 2, "cancelled": 2}
TERMINAL_STATES = frozenset({"completed", "cancelled"})

# Games where the ledger may grow the stake after creation (raise/all-in, double).
RAISABLE_GAMES = frozenset({"poker", "blackjack"})
# Dealer cards from this position on stay face down until the ledger reveals them.
DEALER_CONCEALED_FROM = 1


@dataclass(frozen=True)
class PublicFields:
    player_total: int | None = None
    dealer_total: int | None = None
    revealed: bool = False
    pot: float | None = None
    current_bet: float | None = None
    player_balance: float | None = None
    current_player: str | None = None
    players: tuple[str, ...] = ()
    player_cards: tuple[Card, ...] = ()
    dealer_cards: tuple[Card, ...] = ()

    def to_model(self) -> PublicFieldsModel:
        return PublicFieldsModel(
            player_total=self.player_total,
            dealer_total=self.dealer_total,
            revealed=self.revealed,
            pot=self.pot,
            current_bet=self.current_bet,
            player_balance=self.player_balance,
            current_player=self.current_player,
            players=list(self.players),
            player_cards=[card.to_model() for card in self.player_cards],
            dealer_cards=[card.to_model() for card in self.dealer_cards],
        )


@dataclass(frozen=True)
class ReelResult:
    symbols: tuple[int, ...]
    payout: float | None
    preview_multiplier: int

    def to_model(self) -> ReelResultModel:
        return ReelResultModel(
            symbols=list(self.symbols),
            display=[symbol_display(symbol) for symbol in self.symbols],
            payout=self.payout,
            preview_multiplier=self.preview_multiplier,
        )


@dataclass(frozen=True)
class Completion:
    winner: str | None = None
    player_won: bool | None = None
    payout: float | None = None

    def merged_with(self, other: "Completion") -> "Completion":
        return Completion(
            winner=other.winner if other.winner is not None else self.winner,
            player_won=other.player_won if other.player_won is not None else self.player_won,
            payout=other.payout if other.payout is not None else self.payout,
        )


@dataclass(frozen=True)
class GameSession:
    id: str
    game_kind: GameKind
    account: str
    bet_amount: float
    state: SessionStateName = "waiting"
    round_id: str | None = None
    public: PublicFields = field(default_factory=PublicFields)
    reels: ReelResult | None = None
    completion: Completion | None = None
    last_synced_at: datetime | None = None
    applied_events: frozenset[str] = frozenset()
    stats_recorded: bool = False

    @property
    def ledger_ref(self) -> str:
        # Poker tables are addressed by id; single-table games by the player's account.
        return self.id if self.game_kind == "poker" else self.account

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def to_model(
        self,
        pending_action: PendingActionModel | None = None,
        message: OutcomeMessageModel | None = None,
    ) -> GameSessionModel:
        completion = None
        if self.completion is not None:
            completion = CompletionModel(
                winner=self.completion.winner,
                player_won=self.completion.player_won,
                payout=self.completion.payout,
            )
        return GameSessionModel(
            session_id=self.id,
            game_kind=self.game_kind,
            account=self.account,
            bet_amount=self.bet_amount,
            state=self.state,
            round_id=self.round_id,
            public_fields=self.public.to_model(),
            reels=self.reels.to_model() if self.reels else None,
            completion=completion,
            last_synced_at=self.last_synced_at.isoformat() if self.last_synced_at else None,
            pending_action=pending_action,
            message=message,
        )


def single_table_session_id(game_kind: str, account: str) -> str:
    return f"{game_kind}-{account.lower()}"


def same_account(left: str | None, right: str | None) -> bool:
    return bool(left) and bool(right) and left.lower() == right.lower()


def is_stale_state(current: str, incoming: str) -> bool:
    """True when ``incoming`` would move a session backwards or across terminal states."""
    if STATE_RANK[incoming] < STATE_RANK[current]:
        return True
    return current in TERMINAL_STATES and incoming != current


def _is_other_round(session: GameSession, round_id: str | None) -> bool:
    return session.round_id is not None and round_id is not None and round_id != session.round_id


def _is_own_round(session: GameSession, round_id: str | None) -> bool:
    """True when an event provably belongs to the session's current round.

    Poker tables are addressed by their own id. Per-account games reuse the
    account as reference across rounds, so their events must name the bound round.
    """
    if session.game_kind == "poker":
        return True
    return session.round_id is not None and round_id == session.round_id


def _reel_result(session: GameSession, symbols: list[int] | tuple[int, ...], payout: float | None) -> ReelResult | None:
    try:
        multiplier = preview_multiplier(symbols)
    except ValueError as exc:
        logger.debug("Ignoring unreadable reels %s for %s: %s", symbols, session.id, exc)
        return session.reels
    if payout is not None:
        preview = session.bet_amount * multiplier
        if not math.isclose(preview, payout, rel_tol=1e-9, abs_tol=1e-12):
            logger.info(
                "Ledger payout %s differs from preview %s for reels %s (session %s)",
                payout,
                preview,
                list(symbols),
                session.id,
            )
    return ReelResult(symbols=tuple(symbols), payout=payout, preview_multiplier=multiplier)


def merge_snapshot(
    session: GameSession,
    snapshot: LedgerSnapshot,
    hand: list[str] | tuple[str, ...],
    codec: CardCodec,
    synced_at: datetime,
) -> GameSession:
    if snapshot.game_kind != session.game_kind:
        logger.warning("Discarding %s snapshot for %s session %s", snapshot.game_kind, session.game_kind, session.id)
        return session
    if _is_other_round(session, snapshot.round_id):
        logger.debug("Discarding snapshot of round %s for session %s", snapshot.round_id, session.id)
        return session
    if is_stale_state(session.state, snapshot.state):
        logger.debug("Discarding stale %s snapshot for %s session %s", snapshot.state, session.state, session.id)
        return session

    revealed = snapshot.revealed
    public = PublicFields(
        player_total=snapshot.player_total,
        dealer_total=snapshot.dealer_total if revealed else None,
        revealed=revealed,
        pot=snapshot.pot,
        current_bet=snapshot.current_bet,
        player_balance=snapshot.player_balance,
        current_player=snapshot.current_player,
        players=tuple(snapshot.players),
        player_cards=codec.decode_hand(hand),
        dealer_cards=codec.decode_hand(snapshot.dealer_cards, conceal_from=None if revealed else DEALER_CONCEALED_FROM),
    )

    bet_amount = session.bet_amount
    if session.game_kind in RAISABLE_GAMES and snapshot.bet_amount > bet_amount:
        bet_amount = snapshot.bet_amount

    completion = session.completion
    if snapshot.state == "completed" and (
        snapshot.winner is not None or snapshot.player_won is not None or snapshot.payout is not None
    ):
        reported = Completion(winner=snapshot.winner, player_won=snapshot.player_won, payout=snapshot.payout)
        completion = (completion or Completion()).merged_with(reported)

    updated = replace(
        session,
        state=snapshot.state,
        bet_amount=bet_amount,
        public=public,
        completion=completion,
        last_synced_at=synced_at,
    )
    if updated.round_id is None and snapshot.round_id is not None and snapshot.state not in TERMINAL_STATES:
        updated = replace(updated, round_id=snapshot.round_id)
    if session.game_kind == "slots" and snapshot.reels:
        payout = completion.payout if completion else snapshot.payout
        updated = replace(updated, reels=_reel_result(updated, snapshot.reels, payout))
    if session.last_synced_at is not None and replace(updated, last_synced_at=session.last_synced_at) == session:
        # Nothing but the sync time would change.
        return session
    return updated


def apply_event(session: GameSession, event: LedgerEvent, codec: CardCodec) -> GameSession:
    if event.event_id in session.applied_events:
        return session

    seen = session.applied_events | {event.event_id}
    if _is_other_round(session, event.round_id):
        logger.debug("Ignoring %s from round %s for session %s", event.kind, event.round_id, session.id)
        return replace(session, applied_events=seen)

    updated = replace(session, applied_events=seen)
    payload = event.payload

    if event.kind == "SessionStarted":
        if updated.round_id is None and event.round_id is not None:
            updated = replace(updated, round_id=event.round_id)
    elif event.kind == "CardsDealt":
        if same_account(event.account, session.account) and not session.is_terminal:
            cards = codec.decode_hand(payload.get("cards") or [])
            updated = replace(updated, public=replace(updated.public, player_cards=cards))
    elif event.kind == "SessionCompleted":
        reported = Completion(
            winner=payload.get("winner"),
            player_won=payload.get("playerWon"),
            payout=payload.get("payout"),
        )
        updated = replace(updated, completion=(session.completion or Completion()).merged_with(reported))
        if not _is_own_round(session, event.round_id):
            # Could be a replay from an earlier round; wait for a completed snapshot.
            logger.debug("Holding unbound %s for session %s until the ledger confirms it", event.kind, session.id)
            return updated
        if not is_stale_state(session.state, "completed"):
            updated = replace(updated, state="completed")
        if session.game_kind == "slots" and payload.get("reels"):
            updated = replace(updated, reels=_reel_result(updated, payload["reels"], reported.payout))
    return updated
