import asyncio
import logging

from sutda.models import GameStatus
from sutda.supervisor import TimeoutSupervisor

from .helpers import create_engine, create_table, start_with_hands


def test_sweep_leaves_running_turns_alone():
    engine, clock = create_engine()
    game, _ = create_table(engine)
    start_with_hands(engine, game.id, [(19, 20), (3, 6)])

    clock.advance(10)
    assert TimeoutSupervisor(engine).sweep() == {}
    assert engine.store.read_game_state(game.id).status == GameStatus.PLAYING


def test_sweep_forces_die_on_expired_turn():
    engine, clock = create_engine()
    game, (alice, bob) = create_table(engine)
    start_with_hands(engine, game.id, [(19, 20), (3, 6)])

    clock.advance(30)
    results = TimeoutSupervisor(engine).sweep()

    assert results[game.id][0]["ev"] == "DIE"
    assert results[game.id][0]["player"] == alice.id
    assert engine.store.read_game_state(game.id).winner == bob.id


def test_sweep_restarts_regame_after_countdown():
    engine, clock = create_engine(regame_delay_ms=2_000)
    game, (alice, bob) = create_table(engine)
    start_with_hands(engine, game.id, [(7, 17), (3, 6)])
    engine.submit_action(game.id, alice.id, "CHECK")
    engine.submit_action(game.id, bob.id, "CHECK")
    supervisor = TimeoutSupervisor(engine)

    clock.advance(1)
    assert supervisor.sweep() == {}
    assert engine.store.read_game_state(game.id).status == GameStatus.REGAME

    clock.advance(1)
    results = supervisor.sweep()
    assert results[game.id][0]["ev"] == "REGAME_DEAL"
    state = engine.store.read_game_state(game.id)
    assert state.status == GameStatus.PLAYING
    assert all(len(player.cards) == 2 for player in engine.store.read_players(game.id))


def test_sweep_keeps_going_when_one_game_fails(monkeypatch, caplog):
    engine, clock = create_engine()
    broken, _ = create_table(engine)
    healthy, (carol, _) = create_table(engine, ["Carol", "Dave"])
    start_with_hands(engine, broken.id, [(19, 20), (3, 6)])
    start_with_hands(engine, healthy.id, [(19, 20), (3, 6)])
    clock.advance(31)

    real_expire = engine.expire_turn

    def flaky_expire(game_id, deadline):
        if game_id == broken.id:
            raise RuntimeError("store offline")
        return real_expire(game_id, deadline)

    monkeypatch.setattr(engine, "expire_turn", flaky_expire)
    with caplog.at_level(logging.ERROR, logger="sutda.supervisor"):
        results = TimeoutSupervisor(engine).sweep()

    assert broken.id not in results
    assert results[healthy.id][0]["player"] == carol.id
    assert "turn expiry" in caplog.text


def test_sweep_skips_turns_that_moved_on(monkeypatch):
    engine, clock = create_engine()
    game, (alice, _) = create_table(engine)
    start_with_hands(engine, game.id, [(19, 20), (3, 6)])
    clock.advance(31)

    real_expire = engine.expire_turn

    def act_first(game_id, deadline):
        # The player acts between the sweep read and the expiry attempt.
        engine.submit_action(game_id, alice.id, "CHECK")
        return real_expire(game_id, deadline)

    monkeypatch.setattr(engine, "expire_turn", act_first)
    assert TimeoutSupervisor(engine).sweep() == {}
    assert not engine.store.read_player(alice.id).folded


def test_run_task_publishes_results_and_stops():
    engine, clock = create_engine()
    game, _ = create_table(engine)
    start_with_hands(engine, game.id, [(19, 20), (3, 6)])
    clock.advance(31)
    published = []

    async def on_events(results):
        published.append(results)

    async def scenario():
        supervisor = TimeoutSupervisor(engine, interval_ms=5)
        supervisor.start(on_events)
        await asyncio.sleep(0.05)
        await supervisor.stop()

    asyncio.run(scenario())
    assert published and game.id in published[0]


def test_run_loop_survives_a_failed_sweep(monkeypatch, caplog):
    engine, clock = create_engine()
    game, _ = create_table(engine)
    start_with_hands(engine, game.id, [(19, 20), (3, 6)])
    clock.advance(31)
    supervisor = TimeoutSupervisor(engine, interval_ms=5)
    real_sweep = supervisor.sweep
    calls = []
    published = []

    def flaky_sweep():
        calls.append(len(calls))
        if len(calls) == 1:
            raise RuntimeError("store offline")
        return real_sweep()

    async def on_events(results):
        published.append(results)

    async def scenario():
        monkeypatch.setattr(supervisor, "sweep", flaky_sweep)
        task = supervisor.start(on_events)
        await asyncio.sleep(0.05)
        assert not task.done()
        await supervisor.stop()

    with caplog.at_level(logging.ERROR, logger="sutda.supervisor"):
        asyncio.run(scenario())

    assert len(calls) >= 2
    assert "Supervisor sweep failed" in caplog.text
    assert published and game.id in published[0]
