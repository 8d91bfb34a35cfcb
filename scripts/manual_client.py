#!/usr/bin/env python3
from __future__ import annotations

import argparse
import asyncio
import json
import logging
from typing import Any, Dict, Optional

import websockets

from sutda.cards import cards_to_labels

logging.basicConfig(level=logging.INFO)

# ManualClient plays one seat from the terminal. Prompts run in a worker
# thread so state pushes keep printing while the player types.

COMMANDS = {
    "check": "CHECK",
    "call": "CALL",
    "bet": "BET",
    "raise": "RAISE",
    "half": "HALF",
    "double": "DOUBLE",
    "die": "DIE",
}


class ManualClient:
    def __init__(self, name: str, url: str, game_id: Optional[str] = None, mode: int = 2) -> None:
        self.name = name
        self.url = url
        self.game_id = game_id
        self.mode = mode
        self.player_id: Optional[str] = None
        self.websocket = None

    async def run(self) -> None:
        async with websockets.connect(self.url) as ws:
            self.websocket = ws
            if self.game_id:
                await self._send({"type": "join", "game_id": self.game_id, "name": self.name})
            else:
                await self._send({"type": "create", "name": self.name, "mode": self.mode})
            await asyncio.gather(self._receive(), self._prompt_loop())

    async def _receive(self) -> None:
        assert self.websocket is not None
        async for raw in self.websocket:
            self._print_message(json.loads(raw))

    async def _prompt_loop(self) -> None:
        while True:
            line = await asyncio.to_thread(input, "> ")
            payload = self._parse_command(line.strip())
            if payload is not None:
                await self._send(payload)

    def _parse_command(self, line: str) -> Optional[Dict[str, Any]]:
        if not line:
            return None
        parts = line.split()
        word = parts[0].lower()
        if word in ("h", "help"):
            print("start | state | history | check | call | die | half | double | bet N | raise N | select A B")
            return None
        if word in ("start", "state", "history"):
            return {"type": word}
        if word == "select":
            try:
                return {"type": "select", "cards": [int(card) for card in parts[1:]]}
            except ValueError:
                print("Cards are ids between 1 and 20")
                return None
        if word not in COMMANDS:
            print("Unknown command (h=help)")
            return None
        payload: Dict[str, Any] = {"type": "action", "action": COMMANDS[word]}
        if word in ("bet", "raise"):
            if len(parts) != 2 or not parts[1].isdigit():
                print(f"Usage: {word} AMOUNT")
                return None
            payload["amount"] = int(parts[1])
        return payload

    def _print_message(self, msg: Dict[str, Any]) -> None:
        msg_type = msg.get("type")
        if msg_type == "welcome":
            self.player_id = msg["player_id"]
            self.game_id = msg["game_id"]
            print(f"Joined game {self.game_id} at seat {msg['seat']} ({json.dumps(msg['config'])})")
        elif msg_type == "state":
            self._render_state(msg)
        elif msg_type == "events":
            for event in msg.get("events", []):
                summary = {k: v for k, v in event.items() if k != "ev"}
                print(f"Event {event['ev']}: {summary}")
        elif msg_type == "history":
            for entry in msg.get("actions", []):
                print(f"  r{entry['round']}.{entry['betting_round']} {entry['action']} {entry['amount']}")
        elif msg_type == "error":
            print(f"Error {msg['code']}: {msg['msg']}")

    def _render_state(self, state: Dict[str, Any]) -> None:
        print(f"\n[{state['status']}] round {state['round']} pot={state['pot']} last bet={state['last_bet']}")
        for seat in state["players"]:
            cards = seat["cards"]
            shown = " ".join(cards_to_labels(cards)) if cards and None not in cards else "?" * len(cards)
            marker = "*" if seat["id"] == state["current_turn"] else " "
            rank = f" ({seat['rank']})" if "rank" in seat else ""
            print(f" {marker} {seat['seat']}:{seat['name']} {seat['balance']} bet={seat['current_bet']} {shown}{rank}")
        if state["current_turn"] == self.player_id:
            print(f"Your turn, {state['time_remaining_ms'] // 1000}s left")
        if state.get("regame_remaining") is not None:
            print(f"Regame in {state['regame_remaining']}s")

    async def _send(self, payload: Dict[str, Any]) -> None:
        assert self.websocket is not None
        await self.websocket.send(json.dumps(payload))


def main() -> None:
    parser = argparse.ArgumentParser(description="Play a Sutda seat from the terminal")
    parser.add_argument("--name", required=True)
    parser.add_argument("--url", default="ws://localhost:8765")
    parser.add_argument("--game", help="Join an existing game id instead of creating one")
    parser.add_argument("--mode", type=int, choices=(2, 3), default=2)
    args = parser.parse_args()

    try:
        asyncio.run(ManualClient(args.name, args.url, args.game, args.mode).run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
