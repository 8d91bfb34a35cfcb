from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple


class GameStatus(str, Enum):
    WAITING = "WAITING"
    PLAYING = "PLAYING"
    FINISHED = "FINISHED"
    REGAME = "REGAME"


class ActionType(str, Enum):
    CHECK = "CHECK"
    CALL = "CALL"
    BET = "BET"
    RAISE = "RAISE"
    HALF = "HALF"
    DOUBLE = "DOUBLE"
    DIE = "DIE"

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            name = value.strip().upper()
            if name == "FOLD":
                return cls.DIE
            if name in cls.__members__:
                return cls[name]
        return None


@dataclass
class GameConfig:
    base_bet: int = 1_000
    starting_balance: int = 10_000
    max_players: int = 6
    mode: int = 2
    move_time_ms: int = 30_000
    regame_delay_ms: int = 5_000
    sweep_interval_ms: int = 1_000
    max_retries: int = 3

    def __post_init__(self) -> None:
        if self.mode not in (2, 3):
            raise ValueError("mode must be 2 or 3")
        if self.base_bet <= 0:
            raise ValueError("base_bet must be positive")
        if self.starting_balance < 0:
            raise ValueError("starting_balance cannot be negative")
        if not 2 <= self.max_players <= 20 // self.mode:
            raise ValueError(f"max_players must be between 2 and {20 // self.mode}")
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")


@dataclass(frozen=True)
class PlayerState:
    id: str
    game_id: str
    name: str
    seat: int
    balance: int
    cards: Tuple[int, ...] = ()
    folded: bool = False
    in_round: bool = False
    # Chips committed during the current betting round.
    current_bet: int = 0
    has_acted: bool = False
    selected: Tuple[int, ...] = ()
    version: int = 0

    @property
    def contending(self) -> bool:
        return self.in_round and not self.folded


@dataclass(frozen=True)
class GameState:
    id: str
    base_bet: int
    mode: int = 2
    status: GameStatus = GameStatus.WAITING
    pot: int = 0
    current_turn: Optional[str] = None
    turn_deadline: Optional[float] = None
    last_bet: int = 0
    betting_round: int = 1
    round_no: int = 0
    winner: Optional[str] = None
    payout: int = 0
    # Loser id -> bonus debited; read-only copy per version.
    bonuses: Mapping[str, int] = field(default_factory=dict)
    show_cards: bool = False
    regame_at: Optional[float] = None
    deck: Tuple[int, ...] = ()
    host_id: Optional[str] = None
    next_seat: int = 0
    last_action: Optional[str] = None
    created_at: float = 0.0
    version: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "bonuses", MappingProxyType(dict(self.bonuses)))


@dataclass(frozen=True)
class ActionRecord:
    action: str
    game_id: str
    player_id: Optional[str]
    amount: int = 0
    round_no: int = 0
    betting_round: int = 1
    created_at: float = 0.0
    detail: Optional[str] = None

    def as_dict(self) -> Dict[str, object]:
        return {
            "action": self.action,
            "player_id": self.player_id,
            "amount": self.amount,
            "round": self.round_no,
            "betting_round": self.betting_round,
            "ts": self.created_at,
            "detail": self.detail,
        }
