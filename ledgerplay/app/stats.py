from __future__ import annotations

import asyncio
import logging
import os
import tempfile
import time
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Callable, Protocol

from .models import (
    GAME_KINDS,
    AchievementModel,
    GameKind,
    Outcome,
    PlayerStatsRecord,
    RecentGameModel,
)

logger = logging.getLogger(__name__)

RECENT_GAMES_LIMIT = 10
AMOUNT_PLACES = 4


@dataclass(frozen=True)
class AchievementRule:
    name: str
    description: str
    icon: str
    unlocked: Callable[[PlayerStatsRecord], bool]


ACHIEVEMENT_RULES: tuple[AchievementRule, ...] = (
    AchievementRule("First Win", "Win your first game", "🏆", lambda s: s.games_won >= 1),
    AchievementRule("High Roller", "Wager 10 MATIC total", "💎", lambda s: s.total_wagered >= 10),
    AchievementRule("Poker Pro", "Play 10 poker games", "♠️", lambda s: s.game_stats["poker"].played >= 10),
    AchievementRule("Lucky Spin", "Hit a win on slots", "🎰", lambda s: s.game_stats["slots"].won >= 1),
    AchievementRule("Blackjack Master", "Win 5 blackjack games", "🃏", lambda s: s.game_stats["blackjack"].won >= 5),
)


def account_key(account: str) -> str:
    return account.strip().lower()


def _amount(value: float) -> float:
    return round(value, AMOUNT_PLACES)


class StatsStore(Protocol):
    def load(self, account: str) -> PlayerStatsRecord | None:
        ...

    def save(self, account: str, record: PlayerStatsRecord) -> None:
        ...


class InMemoryStatsStore:
    def __init__(self) -> None:
        self._records: dict[str, str] = {}

    def load(self, account: str) -> PlayerStatsRecord | None:
        raw = self._records.get(account_key(account))
        if raw is None:
            return None
        return PlayerStatsRecord.model_validate_json(raw)

    def save(self, account: str, record: PlayerStatsRecord) -> None:
        self._records[account_key(account)] = record.model_dump_json(by_alias=True)


class JsonFileStatsStore:
    """One ``playerStats_<account>.json`` document per account."""

    def __init__(self, directory: str | Path) -> None:
        self._directory = Path(directory)

    def _path(self, account: str) -> Path:
        safe = "".join(ch for ch in account_key(account) if ch.isalnum() or ch in "-_.")
        if not safe:
            raise ValueError(f"Unusable account key: {account!r}")
        return self._directory / f"playerStats_{safe}.json"

    def load(self, account: str) -> PlayerStatsRecord | None:
        path = self._path(account)
        if not path.exists():
            return None
        return PlayerStatsRecord.model_validate_json(path.read_text(encoding="utf-8"))

    def save(self, account: str, record: PlayerStatsRecord) -> None:
        path = self._path(account)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=path.name, suffix=".tmp", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(record.model_dump_json(by_alias=True, indent=2))
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise


class StatsLedger:
    def __init__(
        self,
        store: StatsStore,
        today: Callable[[], date] = date.today,
        clock_ms: Callable[[], int] = lambda: int(time.time() * 1000),
    ) -> None:
        self._store = store
        self._today = today
        self._clock_ms = clock_ms
        self._account_locks: dict[str, asyncio.Lock] = {}

    def get_stats(self, account: str | None) -> PlayerStatsRecord:
        if not account:
            return self._initial_record()
        try:
            record = self._store.load(account)
        except ValueError as exc:
            logger.warning("Unreadable stats for %s, starting fresh: %s", account, exc)
            return self._initial_record()
        return record if record is not None else self._initial_record()

    async def record_completion(
        self,
        account: str,
        game_kind: GameKind,
        outcome: Outcome,
        wagered: float,
        winnings: float = 0.0,
    ) -> PlayerStatsRecord:
        if not account:
            raise ValueError("Stats are recorded per account.")
        if game_kind not in GAME_KINDS:
            raise ValueError(f"Unknown game: {game_kind}")
        if wagered < 0 or winnings < 0:
            raise ValueError("Wagered and winnings must be non-negative.")

        lock = self._account_locks.setdefault(account_key(account), asyncio.Lock())
        async with lock:
            # Store access may touch disk; keep it off the event loop.
            current = await asyncio.to_thread(self.get_stats, account)
            record = current.model_copy(deep=True)
            self._apply(record, game_kind, outcome, wagered, winnings)
            await asyncio.to_thread(self._store.save, account, record)
            return record

    def _apply(self, record: PlayerStatsRecord, game_kind: GameKind, outcome: Outcome, wagered: float, winnings: float) -> None:
        won = outcome == "win"
        game = record.game_stats[game_kind]
        game.played += 1
        game.wagered = _amount(game.wagered + wagered)
        record.total_games += 1
        record.total_wagered = _amount(record.total_wagered + wagered)
        if won:
            game.won += 1
            game.won_amount = _amount(game.won_amount + winnings)
            record.games_won += 1
            record.total_won = _amount(record.total_won + winnings)
        record.net_profit = _amount(record.total_won - record.total_wagered)
        record.favorite_game = self._favorite_game(record)

        today = self._today().isoformat()
        record.recent_games.insert(
            0,
            RecentGameModel(
                game=game_kind.capitalize(),
                result=outcome.capitalize(),
                amount=_amount(wagered),
                winnings=_amount(winnings),
                date=today,
                timestamp=self._clock_ms(),
            ),
        )
        del record.recent_games[RECENT_GAMES_LIMIT:]

        for rule in ACHIEVEMENT_RULES:
            if rule.name in record.achievements or not rule.unlocked(record):
                continue
            record.achievements[rule.name] = AchievementModel(
                name=rule.name,
                description=rule.description,
                icon=rule.icon,
                earned_date=today,
            )
            logger.info("Achievement unlocked: %s", rule.name)

    @staticmethod
    def _favorite_game(record: PlayerStatsRecord) -> str:
        best: str | None = None
        best_played = 0
        for kind in GAME_KINDS:
            played = record.game_stats[kind].played
            if played > best_played:
                best, best_played = kind, played
        return best.capitalize() if best else "None"

    def _initial_record(self) -> PlayerStatsRecord:
        return PlayerStatsRecord(member_since=self._today().isoformat())
