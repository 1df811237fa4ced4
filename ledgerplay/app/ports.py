from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional, Protocol

from pydantic import Field, model_validator

from .models import ActionKind, CamelModel, GameKind, SessionStateName, SlotsLedgerStatsModel

LedgerMethod = Literal["start_session", "join_session", "act", "claim_winnings"]
EventKind = Literal["SessionStarted", "ActionTaken", "SessionCompleted", "CardsDealt"]

# Ledger state enums, by position.
LEDGER_STATE_CODES: dict[str, tuple[SessionStateName, ...]] = {
    "blackjack": ("waiting", "active", "completed"),
    "poker": ("waiting", "active", "completed", "cancelled"),
    "slots": ("waiting", "active", "completed"),
}
_STATE_ALIASES = {"playing": "active", "in_progress": "active", "complete": "completed", "canceled": "cancelled"}

ACTION_CODES: dict[str, dict[str, int]] = {
    "blackjack": {"hit": 0, "stand": 1, "double": 2},
    "poker": {"fold": 0, "check": 1, "call": 2, "raise": 3, "all_in": 4},
}


def normalize_state(game_kind: str, raw: Any) -> SessionStateName:
    if isinstance(raw, bool):
        raise ValueError(f"Invalid ledger state: {raw!r}")
    if isinstance(raw, int):
        codes = LEDGER_STATE_CODES.get(game_kind, LEDGER_STATE_CODES["poker"])
        if 0 <= raw < len(codes):
            return codes[raw]
        raise ValueError(f"Unknown {game_kind} state code: {raw}")
    text = str(raw).strip().lower()
    text = _STATE_ALIASES.get(text, text)
    if text not in {"waiting", "active", "completed", "cancelled"}:
        raise ValueError(f"Unknown ledger state: {raw!r}")
    return text  # type: ignore[return-value]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class LedgerAction:
    game_kind: GameKind
    method: LedgerMethod
    kind: ActionKind
    session_ref: str | None = None
    action_code: int | None = None
    amount: float | None = None
    value: float = 0.0
    params: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "game": self.game_kind,
            "method": self.method,
            "value": self.value,
        }
        if self.session_ref is not None:
            payload["sessionRef"] = self.session_ref
        if self.action_code is not None:
            payload["action"] = self.action_code
        if self.amount is not None:
            payload["amount"] = self.amount
        if self.params:
            payload["params"] = dict(self.params)
        return payload


class LedgerEvent(CamelModel):
    event_id: str
    kind: EventKind
    game_kind: GameKind
    session_ref: str
    account: Optional[str] = None
    round_id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)


class LedgerSnapshot(CamelModel):
    session_ref: str
    game_kind: GameKind
    state: SessionStateName
    round_id: Optional[str] = None
    bet_amount: float = 0.0
    player_total: Optional[int] = None
    dealer_total: Optional[int] = None
    revealed: bool = False
    pot: Optional[float] = None
    current_bet: Optional[float] = None
    player_balance: Optional[float] = None
    current_player: Optional[str] = None
    players: List[str] = Field(default_factory=list)
    dealer_cards: List[str] = Field(default_factory=list)
    reels: Optional[List[int]] = None
    payout: Optional[float] = None
    winner: Optional[str] = None
    player_won: Optional[bool] = None

    @model_validator(mode="before")
    @classmethod
    def _decode_state_code(cls, data: Any) -> Any:
        if isinstance(data, dict) and "state" in data:
            game = data.get("gameKind", data.get("game_kind", "poker"))
            data = {**data, "state": normalize_state(str(game), data["state"])}
        return data


@dataclass(frozen=True)
class PendingReceipt:
    tx_hash: str
    submitted_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class Receipt:
    tx_hash: str
    events: tuple[LedgerEvent, ...] = ()
    block_number: int | None = None


EventHandler = Callable[[LedgerEvent], Awaitable[None]]


class Subscription(Protocol):
    async def close(self) -> None:
        ...


class IdentityProvider(Protocol):
    def current_account(self) -> str | None:
        ...

    async def submit(self, action: LedgerAction) -> PendingReceipt:
        ...

    async def await_confirmation(self, pending: PendingReceipt) -> Receipt:
        """Resolve to the confirmed receipt or raise TransactionRevertedError."""
        ...


class GameLedger(Protocol):
    async def get_session_state(self, game_kind: GameKind, session_ref: str) -> LedgerSnapshot:
        ...

    async def get_hand(self, game_kind: GameKind, session_ref: str, account: str) -> list[str]:
        ...

    async def subscribe(self, game_kind: GameKind, session_ref: str, handler: EventHandler) -> Subscription:
        ...

    async def get_jackpot(self) -> float:
        ...

    async def get_slots_player_stats(self, account: str) -> SlotsLedgerStatsModel:
        ...

    async def get_claimable_winnings(self, account: str) -> float:
        """Poker winnings held by the ledger for ``account`` until claimed."""
        ...
