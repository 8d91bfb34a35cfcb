from .errors import (
    ConcurrencyConflict,
    GameError,
    InsufficientFundsError,
    NotFoundError,
    StateError,
    TurnError,
    ValidationError,
)
from .evaluator import HandValue, Outcome, Rank, compare, evaluate, find_best_pair
from .game import GameEngine
from .models import ActionType, GameConfig, GameState, GameStatus, PlayerState
from .store import SessionStore
from .supervisor import TimeoutSupervisor

__all__ = [
    "ActionType",
    "ConcurrencyConflict",
    "GameConfig",
    "GameEngine",
    "GameError",
    "GameState",
    "GameStatus",
    "HandValue",
    "InsufficientFundsError",
    "NotFoundError",
    "Outcome",
    "PlayerState",
    "Rank",
    "SessionStore",
    "StateError",
    "TimeoutSupervisor",
    "TurnError",
    "ValidationError",
    "compare",
    "evaluate",
    "find_best_pair",
]
