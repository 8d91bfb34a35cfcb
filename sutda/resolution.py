from __future__ import annotations

import math
from dataclasses import dataclass, field
from fractions import Fraction
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .evaluator import HandValue, Rank, beats_by_override, evaluate
from .models import PlayerState

# A void hand calls for a regame when the best other hand scores at or below
# its threshold.
REGAME_THRESHOLDS: Dict[Rank, int] = {
    Rank.VOID: Rank.ALI.score,
    Rank.STRICT_VOID: Rank.PAIR_10.score,
}

# (winning rank, losing rank) -> extra debit, as a multiple of the base bet.
BONUS_MULTIPLIERS: Dict[Tuple[Rank, Rank], Fraction] = {
    (Rank.TRAP, Rank.PAIR_1): Fraction(1),
    (Rank.TRAP, Rank.PAIR_2): Fraction(5, 4),
    (Rank.TRAP, Rank.PAIR_3): Fraction(3, 2),
    (Rank.TRAP, Rank.PAIR_4): Fraction(2),
    (Rank.TRAP, Rank.PAIR_5): Fraction(5, 2),
    (Rank.TRAP, Rank.PAIR_6): Fraction(3),
    (Rank.TRAP, Rank.PAIR_7): Fraction(7, 2),
    (Rank.TRAP, Rank.PAIR_8): Fraction(4),
    (Rank.TRAP, Rank.PAIR_9): Fraction(9, 2),
    (Rank.BEATER, Rank.LIGHT_13): Fraction(3),
    (Rank.BEATER, Rank.LIGHT_18): Fraction(3),
    (Rank.LIGHT_38, Rank.LIGHT_13): Fraction(2),
    (Rank.LIGHT_38, Rank.LIGHT_18): Fraction(2),
}


@dataclass
class Resolution:
    regame: bool
    winner_id: Optional[str]
    pot: int
    hands: Dict[str, HandValue] = field(default_factory=dict)
    bonuses: Dict[str, int] = field(default_factory=dict)
    compared: bool = False

    @property
    def payout(self) -> int:
        return self.pot + sum(self.bonuses.values())


def bonus_amount(winner: Rank, loser: Rank, base_bet: int) -> int:
    multiplier = BONUS_MULTIPLIERS.get((winner, loser))
    if multiplier is None:
        return 0
    # Fractional chips are rounded down.
    return math.floor(multiplier * base_bet)


def regame_threshold(hands: Sequence[HandValue]) -> Optional[int]:
    thresholds = [REGAME_THRESHOLDS[hand.rank] for hand in hands if hand.rank in REGAME_THRESHOLDS]
    return max(thresholds) if thresholds else None


def pick_winner(ordered: Sequence[Tuple[PlayerState, HandValue]]) -> Tuple[PlayerState, HandValue]:
    """Strongest score first (lower seat on ties); override ranks then challenge it.

    Hands further down the ladder can only take over through an override,
    so a trap that catches the leading pair is not overtaken by points.
    """
    ranked = sorted(ordered, key=lambda item: (-item[1].score, item[0].seat))
    best = ranked[0]
    for challenger in ranked[1:]:
        if beats_by_override(challenger[1], best[1]):
            best = challenger
    return best


def resolve_round(
    contenders: Sequence[PlayerState],
    hands: Mapping[str, Sequence[int]],
    pot: int,
    base_bet: int,
) -> Resolution:
    """Decide a completed round.

    ``contenders`` are the non-folded participants, ``hands`` maps each of
    them to the two cards they play. Nothing is written here; the engine
    applies the returned resolution.
    """
    contenders = sorted(contenders, key=lambda p: p.seat)
    if not contenders:
        return Resolution(regame=False, winner_id=None, pot=pot)
    if len(contenders) == 1:
        return Resolution(regame=False, winner_id=contenders[0].id, pot=pot)

    values = {player.id: evaluate(hands[player.id]) for player in contenders}
    threshold = regame_threshold(list(values.values()))
    eligible = [(player, values[player.id]) for player in contenders if not values[player.id].is_void]

    if threshold is not None:
        best_other = max((value.score for _, value in eligible), default=None)
        if best_other is None or best_other <= threshold:
            return Resolution(regame=True, winner_id=None, pot=pot, hands=values, compared=True)

    winner, winning_hand = pick_winner(eligible)
    bonuses: Dict[str, int] = {}
    for player, value in eligible:
        if player.id == winner.id:
            continue
        amount = min(bonus_amount(winning_hand.rank, value.rank, base_bet), player.balance)
        if amount > 0:
            bonuses[player.id] = amount

    return Resolution(
        regame=False,
        winner_id=winner.id,
        pot=pot,
        hands=values,
        bonuses=bonuses,
        compared=True,
    )


def describe_hands(resolution: Resolution, order: Sequence[PlayerState]) -> List[Dict[str, object]]:
    return [
        dict(resolution.hands[player.id].describe(), player=player.id, seat=player.seat)
        for player in order
        if player.id in resolution.hands
    ]
