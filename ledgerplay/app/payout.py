from __future__ import annotations

from typing import Sequence

SYMBOLS = ("cherry", "lemon", "orange", "bell", "star", "diamond", "seven")
SYMBOL_DISPLAY = ("🍒", "🍋", "🍊", "🔔", "⭐", "💎", "7️⃣")
JACKPOT_SYMBOL = 6

# Indexed by symbol; three of a kind pays bet * multiplier.
TRIPLE_MULTIPLIERS = (5, 10, 15, 50, 100, 250, 1000)
FIRST_TWO_MULTIPLIER = 2
LONE_JACKPOT_MULTIPLIER = 1

JACKPOT_MESSAGE_MULTIPLIER = 1000
BIG_WIN_MESSAGE_MULTIPLIER = 100


def symbol_display(index: int) -> str:
    if 0 <= index < len(SYMBOL_DISPLAY):
        return SYMBOL_DISPLAY[index]
    return "?"


def preview_multiplier(reels: Sequence[int]) -> int:
    if len(reels) != 3:
        raise ValueError("A spin result has exactly three reels.")
    first, second, third = reels
    for symbol in reels:
        if not 0 <= symbol < len(SYMBOLS):
            raise ValueError(f"Unknown reel symbol: {symbol}")

    if first == second == third:
        return TRIPLE_MULTIPLIERS[first]
    if first == second:
        return FIRST_TWO_MULTIPLIER
    if JACKPOT_SYMBOL in reels:
        return LONE_JACKPOT_MULTIPLIER
    return 0


def preview_payout(reels: Sequence[int], bet: float) -> float:
    """Advisory payout for a finished spin. The ledger's reported payout is authoritative."""
    multiplier = preview_multiplier(reels)
    if multiplier == 0:
        return 0
    return bet * multiplier
