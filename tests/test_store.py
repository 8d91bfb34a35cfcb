import threading

import pytest

from sutda.errors import ConcurrencyConflict, NotFoundError
from sutda.models import ActionRecord, GameState, GameStatus, PlayerState
from sutda.store import SessionStore

from .helpers import create_engine, create_table, start_with_hands


def seeded_store():
    store = SessionStore()
    store.create_game(GameState(id="g1", base_bet=1_000))
    store.insert_player(PlayerState(id="p1", game_id="g1", name="Alice", seat=0, balance=10_000))
    store.insert_player(PlayerState(id="p2", game_id="g1", name="Bob", seat=1, balance=10_000))
    return store


def test_conditional_update_bumps_version_and_rejects_stale_writers():
    store = seeded_store()
    updated = store.conditional_update_game("g1", 0, {"pot": 500})
    assert updated.version == 1
    assert updated.pot == 500

    with pytest.raises(ConcurrencyConflict):
        store.conditional_update_game("g1", 0, {"pot": 900})
    assert store.read_game_state("g1").pot == 500


def test_commit_is_all_or_nothing():
    store = seeded_store()
    store.conditional_update_player("p2", 0, {"balance": 9_000})

    with pytest.raises(ConcurrencyConflict):
        store.commit("g1", 0, {"pot": 2_000}, {"p1": (0, {"balance": 8_000}), "p2": (0, {"balance": 8_000})})

    assert store.read_game_state("g1").version == 0
    assert store.read_player("p1").balance == 10_000

    game, players = store.commit("g1", 0, {"pot": 2_000}, {"p1": (0, {"balance": 8_000})})
    assert game.version == 1
    assert players[0].version == 1
    assert store.read_player("p1").balance == 8_000


def test_missing_records_raise_not_found():
    store = seeded_store()
    with pytest.raises(NotFoundError):
        store.read_game_state("nope")
    with pytest.raises(NotFoundError):
        store.read_players("nope")
    with pytest.raises(NotFoundError):
        store.conditional_update_player("ghost", 0, {"balance": 1})
    with pytest.raises(NotFoundError):
        store.append_action(ActionRecord(action="BET", game_id="nope", player_id=None))


def test_players_are_listed_by_seat_and_games_filter_by_status():
    store = seeded_store()
    store.create_game(GameState(id="g2", base_bet=500, status=GameStatus.PLAYING))
    assert [player.id for player in store.read_players("g1")] == ["p1", "p2"]
    assert [game.id for game in store.list_games(GameStatus.PLAYING)] == ["g2"]
    assert len(store.list_games()) == 2


def test_subscribers_receive_changes_until_unsubscribed():
    store = seeded_store()
    changes = []
    unsubscribe = store.subscribe_to_changes("g1", changes.append)

    store.conditional_update_game("g1", 0, {"pot": 100})
    store.append_action(ActionRecord(action="BET", game_id="g1", player_id="p1", amount=100))
    unsubscribe()
    store.conditional_update_game("g1", 1, {"pot": 200})

    assert changes == [
        {"kind": "game", "version": 1, "game_id": "g1"},
        {"kind": "action", "action": "BET", "game_id": "g1"},
    ]


def test_failing_subscriber_does_not_block_writes(caplog):
    store = seeded_store()

    def broken(change):
        raise RuntimeError("boom")

    store.subscribe_to_changes("g1", broken)
    store.conditional_update_game("g1", 0, {"pot": 100})
    assert store.read_game_state("g1").version == 1
    assert "Change subscriber failed" in caplog.text


def test_simultaneous_submissions_commit_exactly_once():
    engine, _ = create_engine()
    game, (alice, _) = create_table(engine)
    start_with_hands(engine, game.id, [(19, 20), (3, 6)])
    version = engine.store.read_game_state(game.id).version

    barrier = threading.Barrier(2)
    outcomes = []

    def submit():
        barrier.wait()
        try:
            engine.submit_action(game.id, alice.id, "BET", 1_000, expected_version=version)
            outcomes.append("ok")
        except ConcurrencyConflict:
            outcomes.append("conflict")

    threads = [threading.Thread(target=submit) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(outcomes) == ["conflict", "ok"]
    assert engine.store.read_game_state(game.id).pot == 1_000


def test_conflicts_without_expected_version_are_retried(monkeypatch):
    engine, _ = create_engine()
    game, (alice, _) = create_table(engine)
    start_with_hands(engine, game.id, [(19, 20), (3, 6)])

    real_commit = engine.store.commit
    calls = []

    def flaky_commit(*args, **kwargs):
        calls.append(args[1])
        if len(calls) == 1:
            raise ConcurrencyConflict("lost the race")
        return real_commit(*args, **kwargs)

    monkeypatch.setattr(engine.store, "commit", flaky_commit)
    engine.submit_action(game.id, alice.id, "CHECK")

    assert len(calls) == 2
    assert engine.store.read_player(alice.id).has_acted


def test_retries_give_up_after_configured_attempts(monkeypatch):
    engine, _ = create_engine()
    game, (alice, _) = create_table(engine)
    start_with_hands(engine, game.id, [(19, 20), (3, 6)])

    def always_conflict(*args, **kwargs):
        raise ConcurrencyConflict("busy")

    monkeypatch.setattr(engine.store, "commit", always_conflict)
    with pytest.raises(ConcurrencyConflict):
        engine.submit_action(game.id, alice.id, "CHECK")
