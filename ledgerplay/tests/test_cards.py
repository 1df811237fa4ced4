from ledgerplay.app.cards import HIDDEN, Card, CardCodec
from ledgerplay.tests.fakes import HIDDEN_TOKEN, card_token


def test_all_zero_token_is_hidden() -> None:
    codec = CardCodec()
    assert codec.decode(HIDDEN_TOKEN) is HIDDEN
    assert codec.decode(bytes(32)) is HIDDEN
    assert codec.decode(HIDDEN_TOKEN).display == "??"


def test_decode_is_deterministic() -> None:
    codec = CardCodec()
    token = "0x" + "b7" * 32
    first = codec.decode(token)
    assert not first.hidden
    assert all(codec.decode(token) == first for _ in range(5))
    assert CardCodec().decode(token) == first


def test_suit_from_first_byte_and_rank_from_second() -> None:
    codec = CardCodec()
    assert codec.decode(card_token("A", "Spade")) == Card(rank="A", suit="Spade")
    assert codec.decode(card_token("K", "Heart")).display == "K♥"
    # 0x05 % 4 -> Heart, 0x0e % 13 -> 3
    assert codec.decode("0x050e" + "00" * 30) == Card(rank="3", suit="Heart")


def test_malformed_tokens_fall_back_to_hidden() -> None:
    codec = CardCodec()
    assert codec.decode("0x1234") is HIDDEN
    assert codec.decode("not-a-card") is HIDDEN
    assert codec.decode(None) is HIDDEN
    assert codec.decode(12345) is HIDDEN  # type: ignore[arg-type]


def test_decode_hand_never_decodes_concealed_positions() -> None:
    codec = CardCodec()
    hand = codec.decode_hand([card_token("10", "Club"), card_token("A", "Diamond")], conceal_from=1)
    assert hand[0] == Card(rank="10", suit="Club")
    assert hand[1] is HIDDEN
