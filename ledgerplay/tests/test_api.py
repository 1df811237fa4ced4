from fastapi.testclient import TestClient

from ledgerplay.app.config import EngineSettings
from ledgerplay.app.main import create_app
from ledgerplay.app.session_manager import SessionManager
from ledgerplay.app.stats import InMemoryStatsStore, StatsLedger
from ledgerplay.tests.fakes import PLAYER, FakeGameLedger, FakeIdentityProvider, card_token

BLACKJACK_ID = f"blackjack-{PLAYER.lower()}"


def _fixture(account: str | None = PLAYER):
    ledger = FakeGameLedger()
    provider = FakeIdentityProvider(ledger, account=account)
    manager = SessionManager(
        provider,
        ledger,
        StatsLedger(InMemoryStatsStore()),
        settings=EngineSettings(poll_interval_seconds=60),
    )
    return ledger, provider, create_app(manager)


def _deal_blackjack(ledger: FakeGameLedger) -> None:
    def confirm(action):
        ledger.set_state(
            "blackjack",
            PLAYER,
            hand=[card_token("8", "Heart"), card_token("5", "Club")],
            state="active",
            bet_amount=0.01,
            player_total=13,
            dealer_total=19,
            dealer_cards=[card_token("10", "Spade"), card_token("9", "Heart")],
        )
        return []

    ledger.on("start", confirm)


def test_health() -> None:
    _, _, app = _fixture()
    with TestClient(app) as client:
        response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_start_blackjack_and_fetch_state() -> None:
    ledger, _, app = _fixture()
    _deal_blackjack(ledger)

    with TestClient(app) as client:
        create_resp = client.post("/api/sessions", json={"gameKind": "blackjack", "betAmount": 0.01})
        assert create_resp.status_code == 200
        state = create_resp.json()
        assert state["sessionId"] == BLACKJACK_ID
        assert state["state"] == "active"
        assert state["betAmount"] == 0.01
        assert state["publicFields"]["playerTotal"] == 13
        assert state["publicFields"]["dealerTotal"] is None
        assert [card["display"] for card in state["publicFields"]["dealerCards"]] == ["10♠", "??"]
        assert state["publicFields"]["dealerCards"][1]["hidden"] is True

        fetch_resp = client.get(f"/api/sessions/{BLACKJACK_ID}")
        assert fetch_resp.status_code == 200
        assert fetch_resp.json()["publicFields"] == state["publicFields"]

        refresh_resp = client.post(f"/api/sessions/{BLACKJACK_ID}/refresh")
        assert refresh_resp.status_code == 200
        assert refresh_resp.json()["state"] == "active"


def test_action_is_submitted_with_its_ledger_code() -> None:
    ledger, provider, app = _fixture()
    _deal_blackjack(ledger)

    with TestClient(app) as client:
        client.post("/api/sessions", json={"gameKind": "blackjack", "betAmount": 0.01})
        action_resp = client.post(f"/api/sessions/{BLACKJACK_ID}/actions", json={"actionType": "double"})
        assert action_resp.status_code == 200
        assert action_resp.json()["pendingAction"] is None

        wrong_game = client.post(f"/api/sessions/{BLACKJACK_ID}/actions", json={"actionType": "fold"})
        assert wrong_game.status_code == 409
        assert wrong_game.json()["detail"]["code"] == "session_flow"

    assert provider.submitted[-1].kind == "double"
    assert provider.submitted[-1].action_code == 2


def test_errors_map_to_status_codes() -> None:
    ledger, provider, app = _fixture()
    _deal_blackjack(ledger)

    with TestClient(app) as client:
        missing = client.get("/api/sessions/blackjack-0xnobody")
        assert missing.status_code == 404
        assert missing.json()["detail"]["code"] == "no_active_session"

        client.post("/api/sessions", json={"gameKind": "blackjack", "betAmount": 0.01})
        again = client.post("/api/sessions", json={"gameKind": "blackjack", "betAmount": 0.01})
        assert again.status_code == 409

        provider.revert_reason = "Bet too large"
        reverted = client.post("/api/sessions", json={"gameKind": "slots", "betAmount": 50})
        assert reverted.status_code == 422
        detail = reverted.json()["detail"]
        assert detail["code"] == "transaction_reverted"
        assert detail["reason"] == "Bet too large"
        assert detail["retryable"] is False

        bad_join = client.post("/api/sessions/not-a-table/join", json={"buyIn": 1})
        assert bad_join.status_code == 409

        invalid_bet = client.post("/api/sessions", json={"gameKind": "blackjack", "betAmount": 0})
        assert invalid_bet.status_code == 422


def test_actions_need_a_connected_account() -> None:
    _, provider, app = _fixture(account=None)
    with TestClient(app) as client:
        response = client.post("/api/sessions", json={"gameKind": "slots", "betAmount": 0.01})
        assert response.status_code == 401
        assert response.json()["detail"]["code"] == "not_connected"
    assert provider.submitted == []


def test_end_session_returns_to_lobby() -> None:
    ledger, _, app = _fixture()
    _deal_blackjack(ledger)

    with TestClient(app) as client:
        client.post("/api/sessions", json={"gameKind": "blackjack", "betAmount": 0.01})
        assert client.delete(f"/api/sessions/{BLACKJACK_ID}").status_code == 204
        assert client.get(f"/api/sessions/{BLACKJACK_ID}").status_code == 404
        assert client.delete(f"/api/sessions/{BLACKJACK_ID}").status_code == 404


def test_stats_are_served_in_camel_case() -> None:
    ledger, _, app = _fixture()

    def spin(action):
        ledger.set_state("slots", PLAYER, state="completed", bet_amount=0.01, reels=[2, 2, 2], payout=0.15)
        return []

    ledger.on("spin", spin)

    with TestClient(app) as client:
        spun = client.post("/api/sessions", json={"gameKind": "slots", "betAmount": 0.01})
        assert spun.status_code == 200
        assert spun.json()["reels"]["display"] == ["🍊", "🍊", "🍊"]

        stats = client.get(f"/api/stats/{PLAYER}").json()
        fresh = client.get("/api/stats/0xnobody").json()

    assert stats["totalGames"] == 1
    assert stats["gamesWon"] == 1
    assert stats["gameStats"]["slots"]["wonAmount"] == 0.15
    assert stats["recentGames"][0]["game"] == "Slots"
    assert {item["name"] for item in stats["achievements"]} == {"First Win", "Lucky Spin"}
    assert fresh["totalGames"] == 0
    assert fresh["achievements"] == []


def test_slots_preview() -> None:
    _, _, app = _fixture()
    with TestClient(app) as client:
        jackpot = client.get("/api/slots/preview", params={"reels": [6, 6, 6], "bet": 0.01})
        assert jackpot.status_code == 200
        assert jackpot.json() == {"multiplier": 1000, "payout": 10.0}

        unknown = client.get("/api/slots/preview", params={"reels": [0, 9, 1], "bet": 0.01})
        assert unknown.status_code == 422


def test_claim_winnings_returns_hash() -> None:
    _, _, app = _fixture()
    with TestClient(app) as client:
        response = client.post("/api/poker/claim")
    assert response.status_code == 200
    assert response.json() == {"txHash": f"0x{1:064x}"}


def test_websocket_ping_state_and_action() -> None:
    ledger, _, app = _fixture()
    _deal_blackjack(ledger)

    with TestClient(app) as client:
        client.post("/api/sessions", json={"gameKind": "blackjack", "betAmount": 0.01})
        with client.websocket_connect(f"/api/ws/sessions/{BLACKJACK_ID}") as websocket:
            initial = websocket.receive_json()
            assert initial["type"] == "session_state"
            assert initial["payload"]["sessionId"] == BLACKJACK_ID

            websocket.send_json({"op": "ping", "requestId": "p1"})
            assert websocket.receive_json() == {"type": "pong", "requestId": "p1"}

            websocket.send_json({"op": "get_state", "requestId": "s1"})
            state = websocket.receive_json()
            assert state["requestId"] == "s1"
            assert state["payload"]["publicFields"]["playerTotal"] == 13

            websocket.send_json({"op": "action", "requestId": "a1", "actionType": "shuffle"})
            invalid = websocket.receive_json()
            assert invalid["type"] == "error"
            assert invalid["status"] == 422

            websocket.send_json({"op": "action", "requestId": "a2", "actionType": "hit"})
            hit = websocket.receive_json()
            assert hit["type"] == "session_state"
            assert hit["requestId"] == "a2"

            websocket.send_json({"op": "teleport", "requestId": "x"})
            assert websocket.receive_json()["status"] == 400


def test_websocket_unknown_session() -> None:
    _, _, app = _fixture()
    with TestClient(app) as client:
        with client.websocket_connect("/api/ws/sessions/blackjack-0xnobody") as websocket:
            error = websocket.receive_json()
    assert error["type"] == "error"
    assert error["status"] == 404


def test_ledger_side_reads() -> None:
    ledger, _, app = _fixture()
    ledger.winnings[PLAYER.lower()] = 0.4
    ledger.slots_stats[PLAYER.lower()] = (9, 1.25)
    ledger.jackpot = 7.0

    with TestClient(app) as client:
        winnings = client.get("/api/poker/winnings")
        other = client.get("/api/poker/winnings", params={"account": "0xB0B"})
        slots = client.get("/api/slots/stats")
        jackpot = client.get("/api/slots/jackpot")

    assert winnings.status_code == 200
    assert winnings.json() == {"account": PLAYER, "winnings": 0.4}
    assert other.json() == {"account": "0xB0B", "winnings": 0.0}
    assert slots.json() == {"account": PLAYER, "spins": 9, "winnings": 1.25}
    assert jackpot.json() == {"jackpot": 7.0}


def test_ledger_side_reads_without_account() -> None:
    _, _, app = _fixture(account=None)
    with TestClient(app) as client:
        response = client.get("/api/poker/winnings")
    assert response.status_code == 401
