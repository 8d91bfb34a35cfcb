from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional

from .errors import GameError
from .game import GameEngine
from .models import GameStatus

LOGGER = logging.getLogger("sutda.supervisor")

# One sweep covers every table. Turn expiry and regame restarts go through
# the engine, which re-checks versions, so a sweep racing a player action
# becomes a no-op instead of a double move.


class TimeoutSupervisor:
    def __init__(self, engine: GameEngine, interval_ms: Optional[int] = None) -> None:
        self.engine = engine
        self.interval_ms = engine.config.sweep_interval_ms if interval_ms is None else interval_ms
        self._task: Optional[asyncio.Task] = None

    def sweep(self) -> Dict[str, List[Dict[str, object]]]:
        """Expire overdue turns and restart due regames; returns events per game."""
        now = self.engine.clock()
        results: Dict[str, List[Dict[str, object]]] = {}

        for game in self.engine.store.list_games(GameStatus.PLAYING):
            if game.turn_deadline is None or game.turn_deadline > now:
                continue
            events = self._guarded(game.id, "turn expiry", self.engine.expire_turn, game.id, game.turn_deadline)
            if events:
                results.setdefault(game.id, []).extend(events)

        for game in self.engine.store.list_games(GameStatus.REGAME):
            if game.regame_at is not None and game.regame_at > now:
                continue
            events = self._guarded(game.id, "regame", self.engine.resume_regame, game.id)
            if events:
                results.setdefault(game.id, []).extend(events)

        return results

    def _guarded(self, game_id, label, operation, *args) -> List[Dict[str, object]]:
        # One broken table must not stop the sweep for the others.
        try:
            return operation(*args)
        except GameError as exc:
            LOGGER.warning("Skipped %s for game %s: %s", label, game_id, exc)
        except Exception:
            LOGGER.exception("Unexpected failure during %s for game %s", label, game_id)
        return []

    async def run(self, on_events=None) -> None:
        """Sweep forever; ``on_events`` is awaited with each non-empty sweep result."""
        LOGGER.info("Timeout supervisor running every %sms", self.interval_ms)
        while True:
            try:
                results = self.sweep()
                if results and on_events is not None:
                    await on_events(results)
            except Exception:
                LOGGER.exception("Supervisor sweep failed; retrying next interval")
            await asyncio.sleep(self.interval_ms / 1000)

    def start(self, on_events=None) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(on_events))
        return self._task

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        LOGGER.info("Timeout supervisor stopped")
