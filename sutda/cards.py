from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from .errors import ValidationError

# 20 hwatu cards, two per month. The odd id of a month is its first card,
# the even id its animal (yeol-kkeut) card.
CARD_IDS = tuple(range(1, 21))
LIGHT_MONTHS = frozenset({1, 3, 8})


@dataclass(frozen=True)
class Card:
    id: int

    def __post_init__(self) -> None:
        if isinstance(self.id, bool) or self.id not in CARD_IDS:
            raise ValidationError(f"Invalid card: {self.id!r}")

    @property
    def month(self) -> int:
        return card_month(self.id)

    @property
    def is_light(self) -> bool:
        return is_light(self.id)

    @property
    def is_animal(self) -> bool:
        return is_animal(self.id)

    @property
    def label(self) -> str:
        if self.is_light:
            kind = "L"
        elif self.is_animal:
            kind = "A"
        else:
            kind = "B"
        return f"{self.month}{kind}"


def card_month(card_id: int) -> int:
    return (card_id + 1) // 2


def is_light(card_id: int) -> bool:
    return card_id % 2 == 1 and card_month(card_id) in LIGHT_MONTHS


def is_animal(card_id: int) -> bool:
    return card_id % 2 == 0


def build_deck(seed: Optional[int] = None) -> List[int]:
    rng = random.Random(seed)
    deck = list(CARD_IDS)
    rng.shuffle(deck)
    return deck


def deal(deck: List[int], count: int) -> List[int]:
    if len(deck) < count:
        raise ValueError("Not enough cards left in deck")
    cards = deck[:count]
    del deck[:count]
    return cards


def validate_cards(cards: Iterable[int], count: Optional[int] = None) -> List[int]:
    result = [Card(card).id for card in cards]
    if count is not None and len(result) != count:
        raise ValidationError(f"Expected {count} cards, got {len(result)}")
    if len(set(result)) != len(result):
        raise ValidationError("Duplicate cards in hand")
    return result


def cards_to_labels(cards: Sequence[int]) -> List[str]:
    return [Card(card).label for card in cards]
