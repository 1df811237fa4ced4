from __future__ import annotations

from datetime import date
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator


GameKind = Literal["poker", "blackjack", "slots"]
SessionStateName = Literal["waiting", "active", "completed", "cancelled"]
Outcome = Literal["win", "loss", "push"]
PendingStatus = Literal["in_flight", "confirmed", "reverted"]
ActionKind = Literal["start", "join", "hit", "stand", "double", "fold", "check", "call", "raise", "all_in", "spin", "claim"]

GAME_KINDS: tuple[GameKind, ...] = ("poker", "blackjack", "slots")


def to_camel(value: str) -> str:
    parts = value.split("_")
    return parts[0] + "".join(part.capitalize() for part in parts[1:])


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)


class CardModel(CamelModel):
    rank: Optional[str] = None
    suit: Optional[str] = None
    hidden: bool
    display: str


class ReelResultModel(CamelModel):
    symbols: List[int]
    display: List[str]
    payout: Optional[float] = None
    preview_multiplier: float


class CompletionModel(CamelModel):
    winner: Optional[str] = None
    player_won: Optional[bool] = None
    payout: Optional[float] = None


class PublicFieldsModel(CamelModel):
    player_total: Optional[int] = None
    dealer_total: Optional[int] = None
    revealed: bool = False
    pot: Optional[float] = None
    current_bet: Optional[float] = None
    player_balance: Optional[float] = None
    current_player: Optional[str] = None
    players: List[str] = Field(default_factory=list)
    player_cards: List[CardModel] = Field(default_factory=list)
    dealer_cards: List[CardModel] = Field(default_factory=list)


class PendingActionModel(CamelModel):
    kind: ActionKind
    submitted_at: str
    status: PendingStatus


class OutcomeMessageModel(CamelModel):
    message: str
    type: str


class GameSessionModel(CamelModel):
    session_id: str
    game_kind: GameKind
    account: str
    bet_amount: float
    state: SessionStateName
    round_id: Optional[str] = None
    public_fields: PublicFieldsModel
    reels: Optional[ReelResultModel] = None
    completion: Optional[CompletionModel] = None
    last_synced_at: Optional[str] = None
    pending_action: Optional[PendingActionModel] = None
    message: Optional[OutcomeMessageModel] = None
    sync_error: Optional[str] = None


class StartSessionRequestModel(CamelModel):
    game_kind: GameKind
    bet_amount: float = Field(gt=0)
    table_name: Optional[str] = None
    max_players: int = Field(default=6, ge=2, le=10)
    small_blind: Optional[float] = None
    big_blind: Optional[float] = None


class JoinSessionRequestModel(CamelModel):
    buy_in: float = Field(gt=0)


class ActionRequestModel(CamelModel):
    action_type: ActionKind
    amount: Optional[float] = None


class ClaimResultModel(CamelModel):
    tx_hash: str


class ClaimableWinningsModel(CamelModel):
    account: str
    winnings: float


class JackpotModel(CamelModel):
    jackpot: float


class SlotsLedgerStatsModel(CamelModel):
    """Spin count and winnings as the slots ledger itself reports them."""

    account: str
    spins: int = Field(default=0, ge=0)
    winnings: float = Field(default=0.0, ge=0)


class AchievementModel(CamelModel):
    name: str
    description: str
    icon: str
    earned_date: str


class RecentGameModel(CamelModel):
    game: str
    result: str
    amount: float
    winnings: float
    date: str
    timestamp: int


class GameStatsModel(CamelModel):
    played: int = 0
    won: int = 0
    wagered: float = 0.0
    won_amount: float = 0.0


def _default_game_stats() -> Dict[str, GameStatsModel]:
    return {kind: GameStatsModel() for kind in GAME_KINDS}


class PlayerStatsRecord(CamelModel):
    total_games: int = 0
    games_won: int = 0
    total_wagered: float = 0.0
    total_won: float = 0.0
    net_profit: float = 0.0
    favorite_game: str = "None"
    member_since: str = Field(default_factory=lambda: date.today().isoformat())
    achievements: Dict[str, AchievementModel] = Field(default_factory=dict)
    recent_games: List[RecentGameModel] = Field(default_factory=list)
    game_stats: Dict[str, GameStatsModel] = Field(default_factory=_default_game_stats)

    @field_validator("achievements", mode="before")
    @classmethod
    def _index_achievements(cls, value: object) -> object:
        # Persisted as a list; held keyed by name so a name can only appear once.
        if not isinstance(value, list):
            return value
        indexed: dict[str, object] = {}
        for item in value:
            name = item.get("name") if isinstance(item, dict) else getattr(item, "name", None)
            if name is not None and name not in indexed:
                indexed[name] = item
        return indexed

    @field_validator("game_stats", mode="after")
    @classmethod
    def _fill_game_stats(cls, value: Dict[str, GameStatsModel]) -> Dict[str, GameStatsModel]:
        for kind in GAME_KINDS:
            value.setdefault(kind, GameStatsModel())
        return value

    @field_serializer("achievements")
    def _list_achievements(self, value: Dict[str, AchievementModel]) -> List[AchievementModel]:
        return list(value.values())
