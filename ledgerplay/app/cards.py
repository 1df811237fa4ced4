from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Union

from .errors import DecodeError
from .models import CardModel

logger = logging.getLogger(__name__)

RANKS = ("2", "3", "4", "5", "6", "7", "8", "9", "10", "J", "Q", "K", "A")
SUITS = ("Spade", "Heart", "Diamond", "Club")
SUIT_SYMBOLS = {"Spade": "♠", "Heart": "♥", "Diamond": "♦", "Club": "♣"}
TOKEN_BYTES = 32

CardToken = Union[str, bytes]


@dataclass(frozen=True)
class Card:
    rank: str | None = None
    suit: str | None = None

    @property
    def hidden(self) -> bool:
        return self.rank is None or self.suit is None

    @property
    def display(self) -> str:
        if self.hidden:
            return "??"
        return f"{self.rank}{SUIT_SYMBOLS[self.suit]}"

    def to_model(self) -> CardModel:
        return CardModel(rank=self.rank, suit=self.suit, hidden=self.hidden, display=self.display)


HIDDEN = Card()


def token_bytes(token: CardToken) -> bytes:
    """Normalize a card token to its raw 32 bytes, raising DecodeError on anything else."""
    if isinstance(token, (bytes, bytearray)):
        raw = bytes(token)
    elif isinstance(token, str):
        text = token.strip()
        if text[:2].lower() == "0x":
            text = text[2:]
        try:
            raw = bytes.fromhex(text)
        except ValueError as exc:
            raise DecodeError(f"Card token is not hex: {token!r}") from exc
    else:
        raise DecodeError(f"Unsupported card token type: {type(token).__name__}")

    if len(raw) != TOKEN_BYTES:
        raise DecodeError(f"Card token must be {TOKEN_BYTES} bytes, got {len(raw)}.")
    return raw


class CardCodec:
    """Stateless translation of ledger card tokens into display cards.

    The ledger packs the suit in the first byte and the rank in the second.
    An all-zero token is the ledger's "not dealt / face down" marker.
    """

    def decode(self, token: CardToken | None) -> Card:
        if token is None:
            return HIDDEN
        try:
            raw = token_bytes(token)
        except DecodeError as exc:
            logger.debug("Substituting hidden card for malformed token: %s", exc)
            return HIDDEN

        if not any(raw):
            return HIDDEN
        return Card(rank=RANKS[raw[1] % len(RANKS)], suit=SUITS[raw[0] % len(SUITS)])

    def decode_hand(self, tokens: Iterable[CardToken | None], conceal_from: int | None = None) -> tuple[Card, ...]:
        """Decode a hand, never decoding positions at or after ``conceal_from``."""
        cards: list[Card] = []
        for index, token in enumerate(tokens):
            if conceal_from is not None and index >= conceal_from:
                cards.append(HIDDEN)
                continue
            cards.append(self.decode(token))
        return tuple(cards)
