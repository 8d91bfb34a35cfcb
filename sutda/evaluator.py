from __future__ import annotations

import itertools
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Dict, Sequence, Tuple

from .cards import card_month, is_animal, is_light, validate_cards


class RankKind(str, Enum):
    LIGHT_PAIR = "LIGHT_PAIR"
    MATCHED_PAIR = "MATCHED_PAIR"
    SPECIAL = "SPECIAL"
    POINTS = "POINTS"
    TRAP = "TRAP"
    BEATER = "BEATER"
    VOID = "VOID"


class Rank(str, Enum):
    LIGHT_38 = "38_light_pair"
    LIGHT_13 = "13_light_pair"
    LIGHT_18 = "18_light_pair"
    PAIR_10 = "10_pair"
    PAIR_9 = "9_pair"
    PAIR_8 = "8_pair"
    PAIR_7 = "7_pair"
    PAIR_6 = "6_pair"
    PAIR_5 = "5_pair"
    PAIR_4 = "4_pair"
    PAIR_3 = "3_pair"
    PAIR_2 = "2_pair"
    PAIR_1 = "1_pair"
    ALI = "ali"
    DOKSA = "doksa"
    GU_PPING = "gu_pping"
    JANG_PPING = "jang_pping"
    JANGSA = "jangsa"
    SERYUK = "seryuk"
    GABO = "gabo"
    POINTS_8 = "8_points"
    POINTS_7 = "7_points"
    POINTS_6 = "6_points"
    POINTS_5 = "5_points"
    POINTS_4 = "4_points"
    POINTS_3 = "3_points"
    POINTS_2 = "2_points"
    POINTS_1 = "1_points"
    MANGTONG = "mangtong"
    TRAP = "ddaengjabi"
    BEATER = "amhaeng_eosa"
    VOID = "gusa"
    STRICT_VOID = "meongteongguri_gusa"

    @property
    def kind(self) -> RankKind:
        return RANK_KINDS[self]

    @property
    def score(self) -> int:
        return RANK_SCORES[self]


MATCHED_PAIRS = {
    10: Rank.PAIR_10,
    9: Rank.PAIR_9,
    8: Rank.PAIR_8,
    7: Rank.PAIR_7,
    6: Rank.PAIR_6,
    5: Rank.PAIR_5,
    4: Rank.PAIR_4,
    3: Rank.PAIR_3,
    2: Rank.PAIR_2,
    1: Rank.PAIR_1,
}

POINT_RANKS = {
    9: Rank.GABO,
    8: Rank.POINTS_8,
    7: Rank.POINTS_7,
    6: Rank.POINTS_6,
    5: Rank.POINTS_5,
    4: Rank.POINTS_4,
    3: Rank.POINTS_3,
    2: Rank.POINTS_2,
    1: Rank.POINTS_1,
    0: Rank.MANGTONG,
}

LIGHT_PAIRS = {
    (3, 8): Rank.LIGHT_38,
    (1, 3): Rank.LIGHT_13,
    (1, 8): Rank.LIGHT_18,
}

# Named month pairs, keyed by (low month, high month).
SPECIAL_PAIRS = {
    (1, 2): Rank.ALI,
    (1, 4): Rank.DOKSA,
    (1, 9): Rank.GU_PPING,
    (1, 10): Rank.JANG_PPING,
    (4, 10): Rank.JANGSA,
    (4, 6): Rank.SERYUK,
}

RANK_SCORES: Dict[Rank, int] = {
    Rank.LIGHT_38: 2000,
    Rank.LIGHT_13: 1900,
    Rank.LIGHT_18: 1800,
    Rank.ALI: 800,
    Rank.DOKSA: 700,
    Rank.GU_PPING: 600,
    Rank.JANG_PPING: 500,
    Rank.JANGSA: 400,
    Rank.SERYUK: 300,
    Rank.GABO: 250,
    Rank.MANGTONG: 50,
    # Override ranks keep the score of their plain point value (3+7 -> 0, 4+7 -> 1).
    Rank.TRAP: 50,
    Rank.BEATER: 110,
    Rank.STRICT_VOID: -100,
    Rank.VOID: -200,
}
RANK_SCORES[Rank.PAIR_10] = 1500
RANK_SCORES.update({rank: 1400 + month * 10 for month, rank in MATCHED_PAIRS.items() if month < 10})
RANK_SCORES.update({rank: 100 + points * 10 for points, rank in POINT_RANKS.items() if 0 < points < 9})

RANK_KINDS: Dict[Rank, RankKind] = {rank: RankKind.LIGHT_PAIR for rank in LIGHT_PAIRS.values()}
RANK_KINDS.update({rank: RankKind.MATCHED_PAIR for rank in MATCHED_PAIRS.values()})
RANK_KINDS.update({rank: RankKind.SPECIAL for rank in SPECIAL_PAIRS.values()})
RANK_KINDS.update({rank: RankKind.POINTS for rank in POINT_RANKS.values()})
RANK_KINDS.update(
    {
        Rank.TRAP: RankKind.TRAP,
        Rank.BEATER: RankKind.BEATER,
        Rank.VOID: RankKind.VOID,
        Rank.STRICT_VOID: RankKind.VOID,
    }
)

# (winner, loser) pairs decided regardless of score.
OVERRIDES: Dict[Tuple[Rank, Rank], Rank] = {}
for _month, _pair in MATCHED_PAIRS.items():
    if _month < 10:
        OVERRIDES[(Rank.TRAP, _pair)] = Rank.TRAP
for _light in (Rank.LIGHT_13, Rank.LIGHT_18):
    OVERRIDES[(Rank.BEATER, _light)] = Rank.BEATER


class Outcome(str, Enum):
    A = "A"
    B = "B"
    TIE = "TIE"

    def inverse(self) -> "Outcome":
        if self is Outcome.A:
            return Outcome.B
        if self is Outcome.B:
            return Outcome.A
        return Outcome.TIE


@dataclass(frozen=True)
class HandValue:
    cards: Tuple[int, int]
    rank: Rank
    score: int

    @property
    def kind(self) -> RankKind:
        return self.rank.kind

    @property
    def is_void(self) -> bool:
        return self.rank.kind == RankKind.VOID

    def describe(self) -> Dict[str, object]:
        return {"cards": list(self.cards), "rank": self.rank.value, "score": self.score}


def evaluate(cards: Sequence[int]) -> HandValue:
    """Score a two-card hand. Card order does not matter."""
    low, high = sorted(validate_cards(cards, count=2))
    return _evaluate_sorted(low, high)


@lru_cache(maxsize=256)
def _evaluate_sorted(low: int, high: int) -> HandValue:
    rank = _classify(low, high)
    return HandValue(cards=(low, high), rank=rank, score=rank.score)


def _classify(low: int, high: int) -> Rank:
    month_low, month_high = card_month(low), card_month(high)
    months = (month_low, month_high)
    both_animal = is_animal(low) and is_animal(high)

    if is_light(low) and is_light(high) and months in LIGHT_PAIRS:
        return LIGHT_PAIRS[months]
    if months == (3, 7) and both_animal:
        return Rank.TRAP
    if months == (4, 7) and both_animal:
        return Rank.BEATER
    if months == (4, 9):
        return Rank.STRICT_VOID if both_animal else Rank.VOID
    if month_low == month_high:
        return MATCHED_PAIRS[month_low]
    if months in SPECIAL_PAIRS:
        return SPECIAL_PAIRS[months]
    return POINT_RANKS[(month_low + month_high) % 10]


def compare(hand_a: Sequence[int], hand_b: Sequence[int]) -> Outcome:
    """Compare two hands: Outcome.A if the first wins, Outcome.B if the second does."""
    return compare_values(evaluate(hand_a), evaluate(hand_b))


def beats_by_override(a: HandValue, b: HandValue) -> bool:
    return (a.rank, b.rank) in OVERRIDES


def compare_values(a: HandValue, b: HandValue) -> Outcome:
    if beats_by_override(a, b):
        return Outcome.A
    if beats_by_override(b, a):
        return Outcome.B
    # Void combos are settled by the round resolution, not head to head.
    if a.is_void or b.is_void:
        return Outcome.TIE
    if a.score > b.score:
        return Outcome.A
    if a.score < b.score:
        return Outcome.B
    return Outcome.TIE


def find_best_pair(cards: Sequence[int]) -> Tuple[int, int]:
    """Pick the strongest two cards out of three; void subsets never win."""
    hand = validate_cards(cards, count=3)
    candidates = [evaluate(pair) for pair in itertools.combinations(hand, 2)]
    best = max(candidates, key=lambda value: (not value.is_void, value.score))
    return best.cards


def evaluation_cache_info():
    return _evaluate_sorted.cache_info()
