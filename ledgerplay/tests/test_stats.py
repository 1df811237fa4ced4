import asyncio
import json
import threading
from datetime import date

from ledgerplay.app.models import PlayerStatsRecord
from ledgerplay.app.stats import InMemoryStatsStore, JsonFileStatsStore, StatsLedger
from ledgerplay.tests.fakes import PLAYER


def _ledger(store=None) -> StatsLedger:
    return StatsLedger(store or InMemoryStatsStore(), today=lambda: date(2024, 5, 1), clock_ms=lambda: 1714521600000)


def test_unknown_account_reads_as_zeroed_record() -> None:
    stats = _ledger().get_stats("0xunknown")
    assert stats.total_games == 0
    assert stats.favorite_game == "None"
    assert stats.member_since == "2024-05-01"
    assert set(stats.game_stats) == {"poker", "blackjack", "slots"}
    assert stats.achievements == {}


def test_win_updates_game_and_aggregate_totals() -> None:
    ledger = _ledger()
    record = asyncio.run(ledger.record_completion(PLAYER, "blackjack", "win", 0.01, 0.025))

    assert record.total_games == 1
    assert record.games_won == 1
    assert record.total_wagered == 0.01
    assert record.total_won == 0.025
    assert record.net_profit == 0.015
    assert record.favorite_game == "Blackjack"
    assert record.game_stats["blackjack"].played == 1
    assert record.game_stats["blackjack"].won_amount == 0.025
    assert record.recent_games[0].game == "Blackjack"
    assert record.recent_games[0].result == "Win"
    assert "First Win" in record.achievements
    assert ledger.get_stats(PLAYER) == record


def test_loss_counts_wager_but_not_winnings() -> None:
    ledger = _ledger()
    record = asyncio.run(ledger.record_completion(PLAYER, "poker", "loss", 0.5, 0.0))
    assert record.games_won == 0
    assert record.total_won == 0.0
    assert record.net_profit == -0.5
    assert record.achievements == {}


def test_favorite_game_ties_go_to_first_listed_game() -> None:
    ledger = _ledger()

    async def scenario() -> PlayerStatsRecord:
        await ledger.record_completion(PLAYER, "slots", "loss", 0.01)
        return await ledger.record_completion(PLAYER, "poker", "loss", 0.01)

    assert asyncio.run(scenario()).favorite_game == "Poker"


def test_recent_games_capped_at_ten_newest_first() -> None:
    ledger = _ledger()

    async def scenario() -> PlayerStatsRecord:
        record = None
        for index in range(13):
            record = await ledger.record_completion(PLAYER, "slots", "loss", float(index + 1))
        return record

    record = asyncio.run(scenario())
    assert len(record.recent_games) == 10
    assert [game.amount for game in record.recent_games] == [float(n) for n in range(13, 3, -1)]
    assert record.total_games == 13


def test_achievements_unlock_once() -> None:
    ledger = _ledger()

    async def scenario() -> PlayerStatsRecord:
        record = None
        for _ in range(6):
            record = await ledger.record_completion(PLAYER, "blackjack", "win", 2.0, 4.0)
        return record

    record = asyncio.run(scenario())
    assert sorted(record.achievements) == ["Blackjack Master", "First Win", "High Roller"]
    dumped = record.model_dump(by_alias=True)
    names = [item["name"] for item in dumped["achievements"]]
    assert len(names) == len(set(names)) == 3


def test_totals_never_decrease() -> None:
    ledger = _ledger()
    outcomes = [("poker", "loss", 0.2, 0.0), ("slots", "win", 0.01, 0.02), ("blackjack", "push", 0.1, 0.1)]

    async def scenario() -> list[PlayerStatsRecord]:
        return [await ledger.record_completion(PLAYER, *outcome) for outcome in outcomes * 3]

    records = asyncio.run(scenario())
    games = [record.total_games for record in records]
    wagered = [record.total_wagered for record in records]
    assert games == sorted(games)
    assert wagered == sorted(wagered)


def test_concurrent_completions_for_one_account_do_not_interleave() -> None:
    ledger = _ledger()

    async def scenario() -> None:
        await asyncio.gather(*(ledger.record_completion(PLAYER, "slots", "loss", 0.01) for _ in range(20)))

    asyncio.run(scenario())
    record = ledger.get_stats(PLAYER)
    assert record.total_games == 20
    assert record.total_wagered == 0.2


def test_json_store_persists_documented_layout(tmp_path) -> None:
    store = JsonFileStatsStore(tmp_path)
    asyncio.run(_ledger(store).record_completion(PLAYER, "slots", "win", 0.01, 0.05))

    files = list(tmp_path.glob("playerStats_*.json"))
    assert len(files) == 1
    document = json.loads(files[0].read_text(encoding="utf-8"))
    assert {"totalGames", "gamesWon", "totalWagered", "totalWon", "netProfit", "favoriteGame", "memberSince"} <= set(document)
    assert document["achievements"][0]["earnedDate"] == "2024-05-01"
    assert document["gameStats"]["slots"] == {"played": 1, "won": 1, "wagered": 0.01, "wonAmount": 0.05}
    assert document["recentGames"][0]["winnings"] == 0.05

    reloaded = _ledger(JsonFileStatsStore(tmp_path)).get_stats(PLAYER.lower())
    assert reloaded.games_won == 1
    assert set(reloaded.achievements) == {"First Win", "Lucky Spin"}


def test_duplicate_achievements_in_stored_document_collapse() -> None:
    record = PlayerStatsRecord.model_validate(
        {
            "achievements": [
                {"name": "First Win", "description": "Win your first game", "icon": "x", "earnedDate": "2024-01-01"},
                {"name": "First Win", "description": "Win your first game", "icon": "x", "earnedDate": "2024-02-01"},
            ]
        }
    )
    assert list(record.achievements) == ["First Win"]
    assert record.achievements["First Win"].earned_date == "2024-01-01"


class _ThreadRecordingStore(InMemoryStatsStore):
    def __init__(self) -> None:
        super().__init__()
        self.threads: list[threading.Thread] = []

    def load(self, account: str) -> PlayerStatsRecord | None:
        self.threads.append(threading.current_thread())
        return super().load(account)

    def save(self, account: str, record: PlayerStatsRecord) -> None:
        self.threads.append(threading.current_thread())
        super().save(account, record)


def test_store_access_runs_off_the_event_loop_thread() -> None:
    store = _ThreadRecordingStore()
    ledger = _ledger(store)

    async def scenario() -> threading.Thread:
        await ledger.record_completion(PLAYER, "poker", "win", 0.5, 1.0)
        return threading.current_thread()

    loop_thread = asyncio.run(scenario())
    assert len(store.threads) == 2
    assert all(thread is not loop_thread for thread in store.threads)
    assert ledger.get_stats(PLAYER).games_won == 1
