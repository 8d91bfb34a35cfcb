from __future__ import annotations

import dataclasses
import logging
import threading
from collections import defaultdict
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from .errors import ConcurrencyConflict, NotFoundError
from .models import ActionRecord, GameState, GameStatus, PlayerState

LOGGER = logging.getLogger("sutda.store")

ChangeCallback = Callable[[Dict[str, object]], None]
PlayerPatches = Mapping[str, Tuple[int, Mapping[str, object]]]

# SessionStore is the shared source of truth. Records are immutable values;
# every write replaces a record with a copy carrying the next version.


class SessionStore:
    """In-memory session store with compare-and-swap writes."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._games: Dict[str, GameState] = {}
        self._players: Dict[str, PlayerState] = {}
        self._actions: Dict[str, List[ActionRecord]] = defaultdict(list)
        self._subscribers: Dict[str, List[ChangeCallback]] = defaultdict(list)

    # Reads -----------------------------------------------------------

    def read_game_state(self, game_id: str) -> GameState:
        with self._lock:
            game = self._games.get(game_id)
        if game is None:
            raise NotFoundError(f"Game {game_id} not found")
        return game

    def read_players(self, game_id: str) -> List[PlayerState]:
        with self._lock:
            if game_id not in self._games:
                raise NotFoundError(f"Game {game_id} not found")
            players = [p for p in self._players.values() if p.game_id == game_id]
        return sorted(players, key=lambda p: p.seat)

    def read_player(self, player_id: str) -> PlayerState:
        with self._lock:
            player = self._players.get(player_id)
        if player is None:
            raise NotFoundError(f"Player {player_id} not found")
        return player

    def list_games(self, status: Optional[GameStatus] = None) -> List[GameState]:
        with self._lock:
            games = list(self._games.values())
        if status is None:
            return games
        return [game for game in games if game.status == status]

    def list_actions(self, game_id: str) -> List[ActionRecord]:
        with self._lock:
            if game_id not in self._games:
                raise NotFoundError(f"Game {game_id} not found")
            return list(self._actions.get(game_id, []))

    # Writes ----------------------------------------------------------

    def create_game(self, game: GameState) -> GameState:
        with self._lock:
            if game.id in self._games:
                raise ConcurrencyConflict(f"Game {game.id} already exists")
            self._games[game.id] = game
        self._notify(game.id, {"kind": "game", "version": game.version})
        return game

    def insert_player(self, player: PlayerState) -> PlayerState:
        with self._lock:
            if player.game_id not in self._games:
                raise NotFoundError(f"Game {player.game_id} not found")
            if player.id in self._players:
                raise ConcurrencyConflict(f"Player {player.id} already exists")
            self._players[player.id] = player
        self._notify(player.game_id, {"kind": "player", "player_id": player.id})
        return player

    def conditional_update_game(
        self, game_id: str, expected_version: int, patch: Mapping[str, object]
    ) -> GameState:
        with self._lock:
            current = self._require_game_version(game_id, expected_version)
            updated = dataclasses.replace(current, **patch, version=current.version + 1)
            self._games[game_id] = updated
        self._notify(game_id, {"kind": "game", "version": updated.version})
        return updated

    def conditional_update_player(
        self, player_id: str, expected_version: int, patch: Mapping[str, object]
    ) -> PlayerState:
        with self._lock:
            current = self._require_player_version(player_id, expected_version)
            updated = dataclasses.replace(current, **patch, version=current.version + 1)
            self._players[player_id] = updated
        self._notify(updated.game_id, {"kind": "player", "player_id": player_id})
        return updated

    def commit(
        self,
        game_id: str,
        expected_version: int,
        game_patch: Mapping[str, object],
        player_patches: Optional[PlayerPatches] = None,
    ) -> Tuple[GameState, List[PlayerState]]:
        """Apply a game patch and player patches atomically, or none of them."""
        player_patches = player_patches or {}
        with self._lock:
            game = self._require_game_version(game_id, expected_version)
            for player_id, (version, _) in player_patches.items():
                player = self._require_player_version(player_id, version)
                if player.game_id != game_id:
                    raise NotFoundError(f"Player {player_id} is not seated in game {game_id}")

            updated_game = dataclasses.replace(game, **game_patch, version=game.version + 1)
            self._games[game_id] = updated_game
            updated_players = []
            for player_id, (_, patch) in player_patches.items():
                current = self._players[player_id]
                updated = dataclasses.replace(current, **patch, version=current.version + 1)
                self._players[player_id] = updated
                updated_players.append(updated)
        self._notify(game_id, {"kind": "game", "version": updated_game.version})
        return updated_game, updated_players

    def append_action(self, record: ActionRecord) -> None:
        with self._lock:
            if record.game_id not in self._games:
                raise NotFoundError(f"Game {record.game_id} not found")
            self._actions[record.game_id].append(record)
        self._notify(record.game_id, {"kind": "action", "action": record.action})

    # Subscriptions ---------------------------------------------------

    def subscribe_to_changes(self, game_id: str, callback: ChangeCallback) -> Callable[[], None]:
        with self._lock:
            self._subscribers[game_id].append(callback)

        def unsubscribe() -> None:
            with self._lock:
                callbacks = self._subscribers.get(game_id, [])
                if callback in callbacks:
                    callbacks.remove(callback)

        return unsubscribe

    def _notify(self, game_id: str, change: Dict[str, object]) -> None:
        with self._lock:
            callbacks = list(self._subscribers.get(game_id, []))
        payload = dict(change, game_id=game_id)
        for callback in callbacks:
            try:
                callback(payload)
            except Exception:
                LOGGER.exception("Change subscriber failed for game %s", game_id)

    def _require_game_version(self, game_id: str, expected_version: int) -> GameState:
        game = self._games.get(game_id)
        if game is None:
            raise NotFoundError(f"Game {game_id} not found")
        if game.version != expected_version:
            raise ConcurrencyConflict(
                f"Game {game_id} is at version {game.version}, expected {expected_version}"
            )
        return game

    def _require_player_version(self, player_id: str, expected_version: int) -> PlayerState:
        player = self._players.get(player_id)
        if player is None:
            raise NotFoundError(f"Player {player_id} not found")
        if player.version != expected_version:
            raise ConcurrencyConflict(
                f"Player {player_id} is at version {player.version}, expected {expected_version}"
            )
        return player
