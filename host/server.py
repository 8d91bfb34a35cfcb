from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Set

import websockets
from websockets.asyncio.server import ServerConnection, serve

from sutda.errors import GameError, ValidationError
from sutda.game import GameEngine
from sutda.models import GameConfig
from sutda.store import SessionStore
from sutda.supervisor import TimeoutSupervisor

LOGGER = logging.getLogger("sutda_host")

# HostServer glues the Sutda engine to WebSocket clients. The engine and
# the store hold all game state; this class only tracks which socket
# belongs to which seat.


@dataclass
class ClientSession:
    game_id: str
    player_id: str
    websocket: ServerConnection


class HostServer:
    def __init__(self, config: Optional[GameConfig] = None, store: Optional[SessionStore] = None) -> None:
        self.store = store or SessionStore()
        self.engine = GameEngine(self.store, config)
        self.supervisor = TimeoutSupervisor(self.engine)
        self.sessions: Dict[str, ClientSession] = {}
        self._subscriptions: Dict[str, Callable[[], None]] = {}
        self._pending_pushes: Set[str] = set()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    async def start(self, host: str = "0.0.0.0", port: int = 8765) -> None:
        self._loop = asyncio.get_running_loop()
        self.supervisor.start(self._publish_sweep)
        try:
            async with serve(self._handle_connection, host, port):
                LOGGER.info("Sutda host listening on %s:%s", host, port)
                await asyncio.Future()
        finally:
            await self.supervisor.stop()
            for unsubscribe in self._subscriptions.values():
                unsubscribe()
            self._subscriptions.clear()

    async def _handle_connection(self, websocket: ServerConnection) -> None:
        session: Optional[ClientSession] = None
        try:
            async for raw in websocket:
                message = self._decode(raw)
                try:
                    session = await self._dispatch(websocket, session, message)
                except GameError as exc:
                    LOGGER.warning(
                        "Rejected %s from %s: %s",
                        message.get("type"),
                        session.player_id if session else "unbound client",
                        exc,
                    )
                    await self._send_error(websocket, code=exc.code, msg=str(exc))
        except websockets.ConnectionClosed:
            pass
        finally:
            if session and self.sessions.get(session.player_id) is session:
                self._release(session)

    def _release(self, session: ClientSession) -> None:
        self.sessions.pop(session.player_id, None)
        LOGGER.info("Player %s disconnected from game %s", session.player_id, session.game_id)
        if any(other.game_id == session.game_id for other in self.sessions.values()):
            return
        unsubscribe = self._subscriptions.pop(session.game_id, None)
        if unsubscribe is not None:
            unsubscribe()
            LOGGER.debug("No sessions left in game %s; dropped store subscription", session.game_id)

    # Message handling ------------------------------------------------

    async def _dispatch(
        self,
        websocket: ServerConnection,
        session: Optional[ClientSession],
        message: Dict[str, object],
    ) -> Optional[ClientSession]:
        msg_type = message.get("type")

        if msg_type == "create":
            game, player = self.engine.create_game(
                message.get("name"),
                base_bet=message.get("base_bet"),
                mode=message.get("mode"),
            )
            return await self._bind(websocket, game.id, player.id)

        if msg_type == "join":
            game_id = message.get("game_id")
            if not isinstance(game_id, str) or not game_id:
                raise ValidationError("game_id required")
            player = self.engine.join_game(game_id, message.get("name"))
            return await self._bind(websocket, game_id, player.id)

        if msg_type not in ("start", "action", "select", "state", "history"):
            await self._send_error(websocket, code="UNKNOWN_TYPE", msg="Unsupported message type")
            return session
        if session is None:
            await self._send_error(websocket, code="NOT_JOINED", msg="Create or join a game first")
            return session

        if msg_type == "start":
            events = self.engine.start_game(session.game_id)
            await self._broadcast_events(session.game_id, events)
        elif msg_type == "action":
            expected_version = message.get("expected_version")
            if expected_version is not None and (
                isinstance(expected_version, bool) or not isinstance(expected_version, int)
            ):
                raise ValidationError("expected_version must be an integer")
            events = self.engine.submit_action(
                session.game_id,
                session.player_id,
                message.get("action"),
                message.get("amount"),
                expected_version=expected_version,
            )
            LOGGER.debug("Applied %s for %s in game %s", message.get("action"), session.player_id, session.game_id)
            await self._broadcast_events(session.game_id, events)
        elif msg_type == "select":
            cards = message.get("cards")
            if not isinstance(cards, list):
                raise ValidationError("cards must be a list")
            events = self.engine.select_cards(session.game_id, session.player_id, cards)
            await self._broadcast_events(session.game_id, events)
        elif msg_type == "state":
            await self._send_state(session)
        else:
            history = self.engine.action_history(session.game_id)
            await self._send_json(websocket, "history", {"game_id": session.game_id, "actions": history})
        return session

    async def _bind(self, websocket: ServerConnection, game_id: str, player_id: str) -> ClientSession:
        # A reconnect under the same name replaces the old socket.
        previous = self.sessions.get(player_id)
        if previous and previous.websocket is not websocket:
            await previous.websocket.close(code=4000, reason="Replaced by new connection")

        session = ClientSession(game_id=game_id, player_id=player_id, websocket=websocket)
        self.sessions[player_id] = session
        if game_id not in self._subscriptions:
            self._subscriptions[game_id] = self.store.subscribe_to_changes(game_id, self._on_store_change)

        player = self.store.read_player(player_id)
        game = self.store.read_game_state(game_id)
        LOGGER.info("Seat %s in game %s bound to %s", player.seat, game_id, player.name)
        await self._send_json(
            websocket,
            "welcome",
            {
                "game_id": game_id,
                "player_id": player_id,
                "seat": player.seat,
                "config": {
                    "base_bet": game.base_bet,
                    "mode": game.mode,
                    "move_time_ms": self.engine.config.move_time_ms,
                    "regame_delay_ms": self.engine.config.regame_delay_ms,
                },
            },
        )
        await self._send_state(session)
        return session

    # State pushes ----------------------------------------------------

    def _on_store_change(self, change: Dict[str, object]) -> None:
        # Store callbacks may fire from any thread; hop onto the loop first.
        if self._loop is None or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._schedule_push, change["game_id"])

    def _schedule_push(self, game_id: str) -> None:
        # Several writes from one transition collapse into one push.
        if game_id in self._pending_pushes:
            return
        self._pending_pushes.add(game_id)
        asyncio.ensure_future(self._push_states(game_id))

    async def _push_states(self, game_id: str) -> None:
        self._pending_pushes.discard(game_id)
        targets = [session for session in self.sessions.values() if session.game_id == game_id]
        await asyncio.gather(*(self._send_state(session) for session in targets), return_exceptions=True)

    async def _send_state(self, session: ClientSession) -> None:
        snapshot = self.engine.get_game_state(session.game_id, viewer_id=session.player_id)
        await self._send_json(session.websocket, "state", snapshot)

    async def _broadcast(self, game_id: str, msg_type: str, payload: Dict[str, object]) -> None:
        targets = [session.websocket for session in self.sessions.values() if session.game_id == game_id]
        if not targets:
            return
        message = self._envelope(msg_type, payload)
        await asyncio.gather(*(socket.send(message) for socket in targets), return_exceptions=True)

    async def _broadcast_events(self, game_id: str, events: List[Dict[str, object]]) -> None:
        if events:
            await self._broadcast(game_id, "events", {"game_id": game_id, "events": events})

    async def _publish_sweep(self, results: Dict[str, List[Dict[str, object]]]) -> None:
        for game_id, events in results.items():
            await self._broadcast_events(game_id, events)

    # Wire helpers ----------------------------------------------------

    async def _send_json(self, websocket: ServerConnection, msg_type: str, payload: Dict[str, object]) -> None:
        try:
            await websocket.send(self._envelope(msg_type, payload))
        except websockets.ConnectionClosed:
            pass

    async def _send_error(self, websocket: ServerConnection, code: str, msg: str) -> None:
        await self._send_json(websocket, "error", {"code": code, "msg": msg})

    def _envelope(self, msg_type: str, payload: Dict[str, object]) -> str:
        body = {"type": msg_type, "v": 1, "ts": datetime.now(timezone.utc).isoformat()}
        body.update(payload)
        return json.dumps(body)

    def _decode(self, raw) -> Dict[str, object]:
        try:
            message = json.loads(raw)
        except json.JSONDecodeError:
            return {}
        return message if isinstance(message, dict) else {}
