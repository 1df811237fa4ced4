from __future__ import annotations

from .models import Outcome, OutcomeMessageModel
from .payout import BIG_WIN_MESSAGE_MULTIPLIER, JACKPOT_MESSAGE_MULTIPLIER
from .session import GameSession, same_account

BLACKJACK = 21


def blackjack_message(session: GameSession) -> OutcomeMessageModel | None:
    """Display text for a blackjack table, read from the totals the ledger reported."""
    public = session.public
    player_total = public.player_total or 0
    if session.state == "completed":
        dealer_total = public.dealer_total or 0
        if player_total > BLACKJACK:
            return OutcomeMessageModel(message="BUST! You lose.", type="loss")
        if dealer_total > BLACKJACK:
            return OutcomeMessageModel(message="Dealer busts! You win!", type="win")
        if player_total > dealer_total:
            return OutcomeMessageModel(message="You win!", type="win")
        if player_total < dealer_total:
            return OutcomeMessageModel(message="You lose.", type="loss")
        return OutcomeMessageModel(message="Push! Bet returned.", type="push")

    if player_total == BLACKJACK and len(public.player_cards) == 2:
        return OutcomeMessageModel(message="BLACKJACK!", type="blackjack")
    if player_total > BLACKJACK:
        return OutcomeMessageModel(message="BUST!", type="bust")
    return None


def slots_message(payout: float | None, bet: float) -> OutcomeMessageModel | None:
    if not payout:
        return None
    if payout >= bet * JACKPOT_MESSAGE_MULTIPLIER:
        return OutcomeMessageModel(message="JACKPOT! 🎉", type="jackpot")
    if payout >= bet * BIG_WIN_MESSAGE_MULTIPLIER:
        return OutcomeMessageModel(message="BIG WIN! 🎊", type="big-win")
    return OutcomeMessageModel(message="WIN! 🎰", type="win")


def session_message(session: GameSession) -> OutcomeMessageModel | None:
    if session.game_kind == "blackjack":
        return blackjack_message(session)
    if session.game_kind == "slots" and session.state == "completed":
        payout = session.reels.payout if session.reels else None
        if payout is None and session.completion is not None:
            payout = session.completion.payout
        return slots_message(payout, session.bet_amount)
    if session.game_kind == "poker" and session.state == "completed" and session.completion is not None:
        if same_account(session.completion.winner, session.account):
            return OutcomeMessageModel(message="You win the pot!", type="win")
        return OutcomeMessageModel(message="Hand over.", type="loss")
    return None


def settle(session: GameSession) -> tuple[Outcome, float]:
    """Result and winnings to record for a completed session, as reported by the ledger."""
    completion = session.completion
    payout = completion.payout if completion and completion.payout is not None else 0.0

    if completion is not None and completion.player_won is not None:
        if completion.player_won:
            return "win", payout
        if payout and abs(payout - session.bet_amount) < 1e-12:
            return "push", payout
        return "loss", payout

    if completion is not None and completion.winner:
        return ("win", payout) if same_account(completion.winner, session.account) else ("loss", 0.0)

    if session.game_kind == "slots":
        return ("win", payout) if payout > 0 else ("loss", 0.0)

    if session.game_kind == "blackjack":
        message = blackjack_message(session)
        if message is not None and message.type in {"win", "push"}:
            return message.type, payout  # type: ignore[return-value]
        return "loss", payout

    return ("win", payout) if payout > 0 else ("loss", 0.0)
