from __future__ import annotations


class GameError(Exception):
    """Base class for every error the engine raises to its callers."""

    code = "GAME_ERROR"


class ValidationError(GameError, ValueError):
    code = "BAD_REQUEST"


class TurnError(GameError):
    code = "OUT_OF_TURN"


class StateError(GameError):
    code = "INVALID_STATE"


class InsufficientFundsError(GameError):
    code = "INSUFFICIENT_FUNDS"


class NotFoundError(GameError, LookupError):
    code = "NOT_FOUND"


class ConcurrencyConflict(GameError):
    """Raised when a conditional write loses against a newer version."""

    code = "VERSION_CONFLICT"
