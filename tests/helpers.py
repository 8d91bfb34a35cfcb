from __future__ import annotations

from typing import List, Sequence, Tuple

from sutda.cards import CARD_IDS
from sutda.game import GameEngine
from sutda.models import GameConfig, GameState, PlayerState
from sutda.store import SessionStore


class FakeClock:
    """Manually advanced clock so deadlines can be crossed without sleeping."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def create_engine(
    *,
    base_bet: int = 1_000,
    starting_balance: int = 10_000,
    mode: int = 2,
    move_time_ms: int = 30_000,
    regame_delay_ms: int = 5_000,
    max_players: int = 6,
) -> Tuple[GameEngine, FakeClock]:
    clock = FakeClock()
    config = GameConfig(
        base_bet=base_bet,
        starting_balance=starting_balance,
        mode=mode,
        move_time_ms=move_time_ms,
        regame_delay_ms=regame_delay_ms,
        max_players=max_players,
    )
    return GameEngine(SessionStore(), config, clock=clock), clock


def create_table(
    engine: GameEngine,
    names: Sequence[str] = ("Alice", "Bob"),
) -> Tuple[GameState, List[PlayerState]]:
    """Open a game hosted by the first name and seat the rest in order."""
    game, host = engine.create_game(names[0])
    players = [host]
    for name in names[1:]:
        players.append(engine.join_game(game.id, name))
    return engine.store.read_game_state(game.id), players


def stacked_deck(hands: Sequence[Sequence[int]], third: Sequence[int] = ()) -> List[int]:
    """Order a deck so seat ``i`` is dealt ``hands[i]`` and then ``third[i]``.

    Cards go out one per player per pass, so the deck interleaves the hands.
    """
    order = [hand[0] for hand in hands] + [hand[1] for hand in hands] + list(third)
    rest = [card for card in CARD_IDS if card not in order]
    return order + rest


def start_with_hands(
    engine: GameEngine,
    game_id: str,
    hands: Sequence[Sequence[int]],
    third: Sequence[int] = (),
):
    return engine.start_game(game_id, deck=stacked_deck(hands, third))


def balances(engine: GameEngine, game_id: str) -> List[int]:
    return [player.balance for player in engine.store.read_players(game_id)]

