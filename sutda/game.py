from __future__ import annotations

import dataclasses
import logging
import math
import time
import uuid
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .cards import build_deck, deal, validate_cards
from .errors import (
    ConcurrencyConflict,
    InsufficientFundsError,
    NotFoundError,
    StateError,
    TurnError,
    ValidationError,
)
from .evaluator import evaluate, find_best_pair
from .models import ActionRecord, ActionType, GameConfig, GameState, GameStatus, PlayerState
from .resolution import describe_hands, resolve_round
from .store import SessionStore

LOGGER = logging.getLogger("sutda.game")

Events = List[Dict[str, object]]

# GameEngine keeps no table state of its own. Each operation reads the
# store, validates against that snapshot and writes back with one
# conditional commit, so concurrent callers cannot both win the same turn.


class _Transition:
    """Pending changes to one game, built on top of the snapshot they came from."""

    def __init__(self, game: GameState, players: Sequence[PlayerState]) -> None:
        self.game = game
        self.versions = {player.id: player.version for player in players}
        self.table: Dict[str, PlayerState] = {player.id: player for player in players}
        self.player_patches: Dict[str, Dict[str, object]] = {}
        self.game_patch: Dict[str, object] = {}
        self.events: Events = []
        self.records: List[ActionRecord] = []

    def players(self) -> List[PlayerState]:
        return sorted(self.table.values(), key=lambda p: p.seat)

    def contenders(self) -> List[PlayerState]:
        return [player for player in self.players() if player.contending]

    def update_player(self, player_id: str, **changes: object) -> PlayerState:
        updated = dataclasses.replace(self.table[player_id], **changes)
        self.table[player_id] = updated
        self.player_patches.setdefault(player_id, {}).update(changes)
        return updated

    def value(self, name: str) -> object:
        return self.game_patch.get(name, getattr(self.game, name))


class GameEngine:
    """Sutda rules, chip accounting and turn order for any number of tables."""

    def __init__(
        self,
        store: SessionStore,
        config: Optional[GameConfig] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.config = config or GameConfig()
        self.clock = clock

    # Lobby -----------------------------------------------------------

    def create_game(
        self,
        host_name: str,
        base_bet: Optional[int] = None,
        mode: Optional[int] = None,
    ) -> Tuple[GameState, PlayerState]:
        name = self._clean_name(host_name)
        base_bet = self.config.base_bet if base_bet is None else base_bet
        mode = self.config.mode if mode is None else mode
        if isinstance(base_bet, bool) or not isinstance(base_bet, int) or base_bet <= 0:
            raise ValidationError("base_bet must be a positive integer")
        if mode not in (2, 3):
            raise ValidationError("mode must be 2 or 3")

        game = GameState(
            id=uuid.uuid4().hex,
            base_bet=base_bet,
            mode=mode,
            host_id=uuid.uuid4().hex,
            next_seat=1,
            created_at=self.clock(),
            last_action=f"{name} opened the table",
        )
        self.store.create_game(game)
        host = self.store.insert_player(
            PlayerState(
                id=game.host_id,
                game_id=game.id,
                name=name,
                seat=0,
                balance=self.config.starting_balance,
            )
        )
        LOGGER.info("Game %s created by %s (base_bet=%s mode=%s)", game.id, name, base_bet, mode)
        return game, host

    def join_game(self, game_id: str, name: str) -> PlayerState:
        display = self._clean_name(name)
        return self._retrying(self._join, game_id, display)

    def _join(self, game_id: str, name: str) -> PlayerState:
        game = self.store.read_game_state(game_id)
        players = self.store.read_players(game_id)

        # Same name rejoins the same seat.
        key = name.casefold()
        for player in players:
            if player.name.casefold() == key:
                return player

        if game.status in (GameStatus.PLAYING, GameStatus.REGAME):
            raise StateError("Cannot join while a round is in progress")
        if game.next_seat >= min(self.config.max_players, 20 // game.mode):
            raise StateError("Table is full")

        seat = game.next_seat
        self.store.conditional_update_game(
            game_id,
            game.version,
            {"next_seat": seat + 1, "last_action": f"{name} joined"},
        )
        player = self.store.insert_player(
            PlayerState(
                id=uuid.uuid4().hex,
                game_id=game_id,
                name=name,
                seat=seat,
                balance=self.config.starting_balance,
            )
        )
        LOGGER.info("Seat %s in game %s claimed by %s", seat, game_id, name)
        return player

    def _clean_name(self, name: object) -> str:
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("Name required")
        display = name.strip()
        if len(display) > 32:
            raise ValidationError("Name is too long")
        return display

    # Round lifecycle -------------------------------------------------

    def start_game(self, game_id: str, deck: Optional[Sequence[int]] = None) -> Events:
        return self._retrying(self._start, game_id, deck)

    def _start(self, game_id: str, deck: Optional[Sequence[int]]) -> Events:
        game = self.store.read_game_state(game_id)
        if game.status in (GameStatus.PLAYING, GameStatus.REGAME):
            raise StateError("Round already in progress")
        players = self.store.read_players(game_id)
        participants = [player for player in players if player.balance > 0]
        if len(participants) < 2:
            raise StateError("At least two players with chips are needed to start")
        return self._deal_round(game, players, participants, deck, pot=0, action="START")

    def resume_regame(self, game_id: str, deck: Optional[Sequence[int]] = None) -> Events:
        return self._retrying(self._resume_regame, game_id, deck)

    def _resume_regame(self, game_id: str, deck: Optional[Sequence[int]]) -> Events:
        game = self.store.read_game_state(game_id)
        if game.status != GameStatus.REGAME:
            raise StateError("Game is not waiting for a regame")
        if game.regame_at is not None and self.clock() < game.regame_at:
            raise StateError("Regame countdown is still running")
        players = self.store.read_players(game_id)
        participants = [player for player in players if player.in_round]
        if len(participants) < 2:
            raise StateError("Not enough players left for a regame")
        return self._deal_round(game, players, participants, deck, pot=game.pot, action="REGAME_DEAL")

    def _deal_round(
        self,
        game: GameState,
        players: Sequence[PlayerState],
        participants: Sequence[PlayerState],
        deck: Optional[Sequence[int]],
        pot: int,
        action: str,
    ) -> Events:
        cards = validate_cards(deck) if deck is not None else build_deck()
        if len(cards) < len(participants) * game.mode:
            raise ValidationError("Not enough cards in deck for every player")

        hands: Dict[str, List[int]] = {player.id: [] for player in participants}
        for _ in range(2):
            for player in participants:
                hands[player.id].extend(deal(cards, 1))

        now = self.clock()
        tx = _Transition(game, players)
        for player in players:
            tx.update_player(
                player.id,
                cards=tuple(hands.get(player.id, ())),
                folded=False,
                in_round=player.id in hands,
                current_bet=0,
                has_acted=False,
                selected=(),
            )

        first = participants[0]
        round_no = game.round_no + 1 if action == "START" else game.round_no
        tx.game_patch.update(
            status=GameStatus.PLAYING,
            pot=pot,
            current_turn=first.id,
            turn_deadline=self._deadline(now),
            last_bet=0,
            betting_round=1,
            round_no=round_no,
            winner=None,
            payout=0,
            bonuses={},
            show_cards=False,
            regame_at=None,
            deck=tuple(cards),
            last_action="Cards dealt",
        )
        tx.events.append(
            {
                "ev": action,
                "round": round_no,
                "pot": pot,
                "players": [player.id for player in participants],
                "first_actor": first.id,
            }
        )
        tx.records.append(self._system_record(game, action, round_no=round_no, amount=pot))
        LOGGER.info(
            "Game %s round %s dealt to %s players (pot=%s, %s)",
            game.id,
            round_no,
            len(participants),
            pot,
            action,
        )
        return self._commit(tx)

    # Action handling -------------------------------------------------

    def submit_action(
        self,
        game_id: str,
        player_id: str,
        action: object,
        amount: Optional[int] = None,
        expected_version: Optional[int] = None,
    ) -> Events:
        action_type = self._parse_action(action)
        if amount is not None and (isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0):
            raise ValidationError("amount must be a positive integer")
        if amount is not None and action_type not in (ActionType.BET, ActionType.RAISE):
            raise ValidationError(f"{action_type.value} does not take an amount")
        if expected_version is not None:
            return self._apply_action(game_id, player_id, action_type, amount, expected_version)
        return self._retrying(self._apply_action, game_id, player_id, action_type, amount, None)

    def _parse_action(self, action: object) -> ActionType:
        if isinstance(action, ActionType):
            return action
        try:
            return ActionType(action)
        except ValueError:
            raise ValidationError(f"Unsupported action {action!r}") from None

    def _apply_action(
        self,
        game_id: str,
        player_id: str,
        action: ActionType,
        amount: Optional[int],
        expected_version: Optional[int],
        detail: Optional[str] = None,
    ) -> Events:
        game = self.store.read_game_state(game_id)
        if expected_version is not None and game.version != expected_version:
            raise ConcurrencyConflict(
                f"Game {game_id} moved to version {game.version}, expected {expected_version}"
            )
        players = self.store.read_players(game_id)
        actor = next((player for player in players if player.id == player_id), None)
        if actor is None:
            raise NotFoundError(f"Player {player_id} not found in game {game_id}")
        if game.status != GameStatus.PLAYING:
            raise StateError(f"Actions are not allowed while the game is {game.status.value}")
        if not actor.in_round:
            raise StateError("Player is not dealt into this round")
        if actor.folded:
            raise StateError("Player has already folded")
        if game.current_turn != actor.id:
            raise TurnError("Not your turn")

        tx = _Transition(game, players)
        contribution, last_bet = self._price_action(game, actor, tx.contenders(), action, amount)

        if action == ActionType.DIE:
            tx.update_player(actor.id, folded=True, has_acted=True)
        else:
            tx.update_player(
                actor.id,
                balance=actor.balance - contribution,
                current_bet=actor.current_bet + contribution,
                has_acted=True,
            )
        description = f"{actor.name} {action.value.lower()}"
        if contribution:
            description = f"{description} {contribution}"
        tx.game_patch.update(pot=game.pot + contribution, last_bet=last_bet, last_action=description)

        event: Dict[str, object] = {"ev": action.value, "player": actor.id, "seat": actor.seat, "amount": contribution}
        if detail:
            event["reason"] = detail
        tx.events.append(event)
        tx.records.append(
            ActionRecord(
                action=action.value,
                game_id=game.id,
                player_id=actor.id,
                amount=contribution,
                round_no=game.round_no,
                betting_round=game.betting_round,
                created_at=self.clock(),
                detail=detail,
            )
        )
        return self._advance_after_action(tx, actor)

    def _price_action(
        self,
        game: GameState,
        actor: PlayerState,
        contenders: Sequence[PlayerState],
        action: ActionType,
        amount: Optional[int],
    ) -> Tuple[int, int]:
        """Return (chips contributed, new last bet) or raise if the action is illegal."""
        max_bet = max(player.current_bet for player in contenders)
        to_call = max_bet - actor.current_bet
        last_bet = game.last_bet

        if action == ActionType.DIE:
            return 0, last_bet
        if action == ActionType.CHECK:
            if to_call > 0:
                raise StateError("Cannot check when facing a bet")
            return 0, last_bet
        if action == ActionType.CALL:
            if to_call <= 0:
                raise StateError("Nothing to call")
            self._require_funds(actor, to_call)
            return to_call, last_bet
        if action in (ActionType.BET, ActionType.RAISE):
            if amount is None:
                raise ValidationError(f"{action.value} requires an amount")
            minimum = 2 * last_bet if last_bet else game.base_bet
            if amount < minimum:
                raise ValidationError(f"Bet below minimum of {minimum}")
            self._require_funds(actor, amount)
            if actor.current_bet + amount <= max_bet:
                raise ValidationError("Bet must raise above the current bet")
            return amount, amount

        if action == ActionType.HALF:
            contribution = max(game.pot // 2, game.base_bet)
        else:
            contribution = 2 * last_bet if last_bet else 2 * game.base_bet
        self._require_funds(actor, contribution)
        level = actor.current_bet + contribution
        if level < max_bet:
            raise ValidationError(
                f"{action.value} of {contribution} does not cover the current bet of {max_bet}"
            )
        return contribution, contribution if level > max_bet else last_bet

    def _require_funds(self, player: PlayerState, amount: int) -> None:
        if amount > player.balance:
            raise InsufficientFundsError(f"Balance {player.balance} is below the required {amount}")

    def _advance_after_action(self, tx: _Transition, actor: PlayerState) -> Events:
        now = self.clock()
        contenders = tx.contenders()
        if len(contenders) <= 1:
            return self._finish_round(tx, now)

        if self._betting_complete(contenders):
            if tx.game.mode == 3 and tx.game.betting_round == 1:
                return self._reveal_third_card(tx, now)
            return self._finish_round(tx, now)

        next_actor = self._next_actor(contenders, actor.seat)
        tx.game_patch.update(current_turn=next_actor.id, turn_deadline=self._deadline(now))
        return self._commit(tx)

    def _betting_complete(self, contenders: Sequence[PlayerState]) -> bool:
        if not all(player.has_acted for player in contenders):
            return False
        return len({player.current_bet for player in contenders}) == 1

    def _next_actor(self, contenders: Sequence[PlayerState], after_seat: int) -> PlayerState:
        for player in contenders:
            if player.seat > after_seat:
                return player
        return contenders[0]

    def _reveal_third_card(self, tx: _Transition, now: float) -> Events:
        deck = list(tx.value("deck"))
        for player in tx.contenders():
            card = deal(deck, 1)[0]
            tx.update_player(player.id, cards=player.cards + (card,), current_bet=0, has_acted=False)
        first = tx.contenders()[0]
        tx.game_patch.update(
            deck=tuple(deck),
            betting_round=2,
            last_bet=0,
            current_turn=first.id,
            turn_deadline=self._deadline(now),
        )
        tx.events.append({"ev": "THIRD_CARD", "betting_round": 2, "first_actor": first.id})
        return self._commit(tx)

    def select_cards(self, game_id: str, player_id: str, cards: Sequence[int]) -> Events:
        """Fix the final two cards of a three-card hand."""
        return self._retrying(self._select_cards, game_id, player_id, cards)

    def _select_cards(self, game_id: str, player_id: str, cards: Sequence[int]) -> Events:
        game = self.store.read_game_state(game_id)
        player = self.store.read_player(player_id)
        if player.game_id != game_id:
            raise NotFoundError(f"Player {player_id} not found in game {game_id}")
        if game.mode != 3:
            raise StateError("Card selection only applies to three-card games")
        if game.status != GameStatus.PLAYING or game.betting_round != 2:
            raise StateError("Cards can only be selected after the third card")
        if not player.contending:
            raise StateError("Player is not contending this round")
        chosen = validate_cards(cards, count=2)
        if not set(chosen) <= set(player.cards):
            raise ValidationError("Selected cards are not in your hand")

        self.store.conditional_update_player(player.id, player.version, {"selected": tuple(sorted(chosen))})
        self.store.append_action(self._system_record(game, "SELECT", player_id=player.id))
        return [{"ev": "SELECT", "player": player.id, "seat": player.seat}]

    # Resolution ------------------------------------------------------

    def _final_hand(self, player: PlayerState, mode: int) -> Tuple[int, ...]:
        if mode == 3 and player.selected:
            return player.selected
        if len(player.cards) == 3:
            return find_best_pair(player.cards)
        return player.cards

    def _finish_round(self, tx: _Transition, now: float) -> Events:
        game = tx.game
        contenders = tx.contenders()
        pot = tx.value("pot")
        hands = {player.id: self._final_hand(player, game.mode) for player in contenders}
        resolution = resolve_round(contenders, hands, pot, game.base_bet)

        if resolution.compared:
            tx.events.extend(dict(hand, ev="SHOWDOWN") for hand in describe_hands(resolution, contenders))
        if resolution.regame:
            return self._enter_regame(tx, now)

        base_patch = dict(current_turn=None, turn_deadline=None, status=GameStatus.FINISHED)
        if resolution.winner_id is None:
            LOGGER.warning("Game %s round %s ended without contenders; pot %s held", game.id, game.round_no, pot)
            tx.game_patch.update(base_patch, winner=None, payout=0, last_action="Round ended without a winner")
            return self._commit(tx)

        for loser_id, bonus in resolution.bonuses.items():
            loser = tx.table[loser_id]
            tx.update_player(loser_id, balance=max(0, loser.balance - bonus))
            tx.events.append({"ev": "BONUS", "player": loser_id, "seat": loser.seat, "amount": bonus})

        winner = tx.table[resolution.winner_id]
        tx.update_player(winner.id, balance=winner.balance + resolution.payout)
        tx.game_patch.update(
            base_patch,
            winner=winner.id,
            payout=resolution.payout,
            pot=0,
            bonuses=dict(resolution.bonuses),
            show_cards=resolution.compared,
            last_action=f"{winner.name} wins {resolution.payout}",
        )
        tx.events.append(
            {
                "ev": "POT_AWARD",
                "player": winner.id,
                "seat": winner.seat,
                "amount": resolution.payout,
                "pot": pot,
            }
        )
        tx.records.append(self._system_record(game, "SHOW", player_id=winner.id, amount=resolution.payout))
        LOGGER.info(
            "Game %s round %s won by %s (pot=%s bonuses=%s)",
            game.id,
            game.round_no,
            winner.name,
            pot,
            resolution.bonuses,
        )
        return self._commit(tx)

    def _enter_regame(self, tx: _Transition, now: float) -> Events:
        game = tx.game
        for player in tx.players():
            if player.in_round:
                tx.update_player(player.id, cards=(), folded=False, current_bet=0, has_acted=False, selected=())
        resume_at = now + self.config.regame_delay_ms / 1000
        tx.game_patch.update(
            status=GameStatus.REGAME,
            current_turn=None,
            turn_deadline=None,
            winner=None,
            last_bet=0,
            deck=(),
            regame_at=resume_at,
            last_action="Regame",
        )
        pot = tx.value("pot")
        tx.events.append({"ev": "REGAME", "pot": pot, "resume_at": resume_at})
        tx.records.append(self._system_record(game, "REGAME", amount=pot))
        LOGGER.info("Game %s round %s voided; regame in %sms with pot %s", game.id, game.round_no, self.config.regame_delay_ms, pot)
        return self._commit(tx)

    # Timeouts --------------------------------------------------------

    def expire_turn(self, game_id: str, seen_deadline: Optional[float]) -> Events:
        """Force the current actor to die once their deadline has passed.

        ``seen_deadline`` is the deadline the caller read; a round whose
        deadline has moved since then is left alone.
        """
        game = self.store.read_game_state(game_id)
        if game.status != GameStatus.PLAYING or game.turn_deadline is None:
            return []
        if game.turn_deadline != seen_deadline:
            LOGGER.debug("Game %s deadline moved since it was read; skipping", game_id)
            return []
        now = self.clock()
        if now < game.turn_deadline:
            return []

        players = self.store.read_players(game_id)
        actor = next((player for player in players if player.id == game.current_turn), None)
        if actor is None or not actor.contending:
            return self._correct_turn(game, players, actor, now)

        LOGGER.info("Turn expired for %s in game %s; forcing die", actor.name, game_id)
        return self._apply_action(game_id, actor.id, ActionType.DIE, None, game.version, detail="timeout")

    def _correct_turn(
        self,
        game: GameState,
        players: Sequence[PlayerState],
        actor: Optional[PlayerState],
        now: float,
    ) -> Events:
        LOGGER.warning(
            "Game %s: current actor %s cannot act; passing the turn without penalty",
            game.id,
            game.current_turn,
        )
        tx = _Transition(game, players)
        tx.records.append(self._system_record(game, "TURN_CORRECTED", player_id=game.current_turn))
        contenders = tx.contenders()
        if len(contenders) <= 1:
            return self._finish_round(tx, now)

        next_actor = self._next_actor(contenders, actor.seat if actor else -1)
        tx.game_patch.update(
            current_turn=next_actor.id,
            turn_deadline=self._deadline(now),
            last_action=f"Turn passed to {next_actor.name}",
        )
        tx.events.append({"ev": "TURN_CORRECTED", "from": game.current_turn, "to": next_actor.id})
        return self._commit(tx)

    # Snapshots -------------------------------------------------------

    def get_game_state(self, game_id: str, viewer_id: Optional[str] = None) -> Dict[str, object]:
        game = self.store.read_game_state(game_id)
        players = self.store.read_players(game_id)
        now = self.clock()
        reveal = game.status == GameStatus.FINISHED and game.show_cards

        seats = []
        for player in players:
            visible = player.id == viewer_id or (reveal and player.contending)
            entry: Dict[str, object] = {
                "id": player.id,
                "name": player.name,
                "seat": player.seat,
                "balance": player.balance,
                "folded": player.folded,
                "in_round": player.in_round,
                "current_bet": player.current_bet,
                "has_acted": player.has_acted,
                "is_host": player.id == game.host_id,
                "cards": list(player.cards) if visible else [None] * len(player.cards),
            }
            if visible and player.cards:
                final = self._final_hand(player, game.mode)
                if len(final) == 2:
                    entry["rank"] = evaluate(final).rank.value
            if player.id == viewer_id and player.selected:
                entry["selected"] = list(player.selected)
            seats.append(entry)

        time_remaining_ms = None
        if game.status == GameStatus.PLAYING and game.turn_deadline is not None:
            time_remaining_ms = max(0, int((game.turn_deadline - now) * 1000))
        regame_remaining = None
        if game.status == GameStatus.REGAME and game.regame_at is not None:
            regame_remaining = max(0, math.ceil(game.regame_at - now))

        return {
            "game_id": game.id,
            "status": game.status.value,
            "version": game.version,
            "mode": game.mode,
            "round": game.round_no,
            "betting_round": game.betting_round,
            "pot": game.pot,
            "base_bet": game.base_bet,
            "last_bet": game.last_bet,
            "current_turn": game.current_turn,
            "time_remaining_ms": time_remaining_ms,
            "winner": game.winner,
            "payout": game.payout,
            "bonuses": dict(game.bonuses),
            "show_cards": game.show_cards,
            "regame_remaining": regame_remaining,
            "last_action": game.last_action,
            "players": seats,
        }

    def action_history(self, game_id: str) -> List[Dict[str, object]]:
        try:
            records = self.store.list_actions(game_id)
        except NotFoundError:
            LOGGER.warning("No action history available for game %s", game_id)
            return []
        return [record.as_dict() for record in records]

    # Helpers ---------------------------------------------------------

    def _deadline(self, now: float) -> float:
        return now + self.config.move_time_ms / 1000

    def _system_record(
        self,
        game: GameState,
        action: str,
        player_id: Optional[str] = None,
        amount: int = 0,
        round_no: Optional[int] = None,
    ) -> ActionRecord:
        return ActionRecord(
            action=action,
            game_id=game.id,
            player_id=player_id,
            amount=amount,
            round_no=game.round_no if round_no is None else round_no,
            betting_round=game.betting_round,
            created_at=self.clock(),
        )

    def _commit(self, tx: _Transition) -> Events:
        patches = {
            player_id: (tx.versions[player_id], patch)
            for player_id, patch in tx.player_patches.items()
        }
        self.store.commit(tx.game.id, tx.game.version, tx.game_patch, patches)
        for record in tx.records:
            self.store.append_action(record)
        return tx.events

    def _retrying(self, operation: Callable[..., object], *args: object):
        attempts = self.config.max_retries
        for attempt in range(1, attempts + 1):
            try:
                return operation(*args)
            except ConcurrencyConflict:
                if attempt == attempts:
                    raise
                LOGGER.debug(
                    "Version conflict in %s (attempt %s/%s); re-reading",
                    operation.__name__,
                    attempt,
                    attempts,
                )
        raise AssertionError("unreachable")
