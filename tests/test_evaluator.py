import itertools

import pytest

from sutda.cards import CARD_IDS, Card, build_deck, card_month, cards_to_labels, deal, is_light
from sutda.errors import ValidationError
from sutda.evaluator import (
    Outcome,
    Rank,
    RankKind,
    compare,
    evaluate,
    evaluation_cache_info,
    find_best_pair,
)


def test_deck_has_two_cards_per_month_and_three_lights():
    deck = build_deck(seed=7)
    assert sorted(deck) == list(CARD_IDS)
    months = [card_month(card) for card in deck]
    assert all(months.count(month) == 2 for month in range(1, 11))
    assert [card for card in CARD_IDS if is_light(card)] == [1, 5, 15]
    assert cards_to_labels([1, 2, 4]) == ["1L", "1A", "2A"]


def test_deal_removes_cards_from_the_deck():
    deck = [1, 2, 3]
    assert deal(deck, 2) == [1, 2]
    assert deck == [3]
    with pytest.raises(ValueError, match="Not enough cards"):
        deal(deck, 2)


def test_evaluate_identifies_every_rank_kind():
    cases = [
        (Rank.LIGHT_38, [5, 15]),
        (Rank.LIGHT_13, [1, 5]),
        (Rank.LIGHT_18, [1, 15]),
        (Rank.PAIR_10, [19, 20]),
        (Rank.PAIR_1, [1, 2]),
        (Rank.ALI, [2, 3]),
        (Rank.DOKSA, [2, 7]),
        (Rank.GU_PPING, [1, 17]),
        (Rank.JANG_PPING, [2, 19]),
        (Rank.JANGSA, [7, 19]),
        (Rank.SERYUK, [7, 11]),
        (Rank.GABO, [3, 13]),  # 2 + 7
        (Rank.POINTS_5, [3, 6]),  # 2 + 3
        (Rank.MANGTONG, [4, 16]),  # 2 + 8
        (Rank.TRAP, [6, 14]),
        (Rank.BEATER, [8, 14]),
        (Rank.VOID, [7, 17]),
        (Rank.STRICT_VOID, [8, 18]),
    ]
    for expected, cards in cases:
        assert evaluate(cards).rank == expected, f"cards={cards}"


def test_light_pair_needs_both_light_cards():
    # 3 and 8 months but the 8 is the animal card
    assert evaluate([5, 16]).rank == Rank.POINTS_1


def test_trap_and_beater_need_both_animal_cards():
    assert evaluate([5, 13]).rank == Rank.MANGTONG  # 3 + 7, light and plain
    assert evaluate([7, 14]).rank == Rank.POINTS_1  # 4 + 7, plain and animal


def test_evaluate_is_invariant_to_card_order():
    for pair in itertools.combinations(CARD_IDS, 2):
        assert evaluate(pair) == evaluate(tuple(reversed(pair)))


def test_ladder_orders_lights_over_pairs_over_specials_over_points():
    assert Rank.LIGHT_18.score > Rank.PAIR_10.score > Rank.PAIR_1.score
    assert Rank.PAIR_1.score > Rank.ALI.score > Rank.SERYUK.score
    assert Rank.SERYUK.score > Rank.GABO.score > Rank.POINTS_8.score > Rank.MANGTONG.score
    assert Rank.VOID.kind == Rank.STRICT_VOID.kind == RankKind.VOID


def test_trap_beats_mid_pairs_but_not_ten_pair():
    trap = [6, 14]
    assert compare(trap, [17, 18]) == Outcome.A  # 9 pair
    assert compare(trap, [1, 2]) == Outcome.A
    assert compare(trap, [19, 20]) == Outcome.B
    # Without an override the trap plays as mangtong.
    assert compare(trap, [3, 6]) == Outcome.B


def test_beater_catches_13_and_18_lights_only():
    beater = [8, 14]
    assert compare(beater, [1, 5]) == Outcome.A
    assert compare(beater, [1, 15]) == Outcome.A
    assert compare(beater, [5, 15]) == Outcome.B
    assert compare(beater, [19, 20]) == Outcome.B


def test_compare_is_antisymmetric_and_reflexive_tie():
    hands = [[5, 15], [19, 20], [6, 14], [8, 14], [2, 3], [3, 6], [4, 16], [7, 17]]
    for a, b in itertools.product(hands, repeat=2):
        assert compare(a, b) == compare(b, a).inverse()
    for hand in hands:
        assert compare(hand, hand) == Outcome.TIE


def test_void_hands_do_not_win_head_to_head():
    assert compare([7, 17], [4, 16]) == Outcome.TIE


def test_find_best_pair_picks_strongest_subset():
    assert find_best_pair([5, 15, 3]) == (5, 15)
    assert find_best_pair([20, 3, 19]) == (19, 20)


def test_find_best_pair_never_prefers_a_void_subset():
    # 4 + 9 is void; 9 + 2 and 4 + 2 both make points.
    best = find_best_pair([7, 17, 4])
    assert evaluate(best).rank != Rank.VOID
    assert set(best) <= {7, 17, 4}


def test_find_best_pair_requires_three_distinct_cards():
    with pytest.raises(ValidationError):
        find_best_pair([1, 2])
    with pytest.raises(ValidationError, match="Duplicate"):
        find_best_pair([1, 1, 2])


def test_evaluate_rejects_invalid_cards():
    with pytest.raises(ValidationError, match="Invalid card"):
        Card(21)
    with pytest.raises(ValidationError):
        evaluate([0, 1])
    with pytest.raises(ValidationError, match="Duplicate"):
        evaluate([3, 3])


def test_evaluation_results_are_cached():
    evaluate([19, 20])
    before = evaluation_cache_info().hits
    evaluate([20, 19])
    assert evaluation_cache_info().hits == before + 1
