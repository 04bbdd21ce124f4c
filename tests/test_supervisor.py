"""Tests for board supervision: actor lifecycle, crash restarts and the restart limiter."""

import tempfile
import time
from pathlib import Path

import pytest

from hookboard.actors.board_manager import BoardManager
from hookboard.actors.board_supervisor import RestartLimiter
from hookboard.config import Config
from hookboard.core import boards as boards_mod
from hookboard.core import hooks as hooks_mod
from hookboard.core import ledger
from hookboard.core import tasks as tasks_mod
from hookboard.db.engine import init_db


@pytest.fixture
def env():
    with tempfile.TemporaryDirectory() as tmp:
        db_path = Path(tmp) / "test.db"
        db = init_db(db_path)
        boards_mod.create_board(db, "demo", "Demo", tmp)
        columns = {name: boards_mod.add_column(db, "demo", name) for name in ("Todo", "Doing")}
        yield db, db_path, columns
        db.close()


@pytest.fixture
def manager(env):
    _, db_path, _ = env
    config = Config(db_path=db_path, call_timeout=20.0, max_restarts=2, restart_window=60.0)
    m = BoardManager(db_path, config).start()
    yield m
    m.shutdown()


def _wait_for(predicate, timeout=10.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return False


class TestRestartLimiter:
    def test_allows_up_to_max(self):
        limiter = RestartLimiter(max_restarts=3, window_s=5.0)
        assert [limiter.allow("t", now=float(i)) for i in range(4)] == [True, True, True, False]

    def test_window_slides(self):
        limiter = RestartLimiter(max_restarts=2, window_s=5.0)
        assert limiter.allow("t", now=0.0)
        assert limiter.allow("t", now=1.0)
        assert not limiter.allow("t", now=2.0)
        assert limiter.allow("t", now=6.5)

    def test_keys_are_independent(self):
        limiter = RestartLimiter(max_restarts=1, window_s=5.0)
        assert limiter.allow("a", now=0.0)
        assert limiter.allow("b", now=0.0)
        assert not limiter.allow("a", now=1.0)


class TestWatcher:
    def test_existing_tasks_get_actors(self, env):
        db, db_path, _ = env
        task = tasks_mod.create_task(db, "demo", "Existing")
        with BoardManager(db_path, Config(db_path=db_path)) as manager:
            actor = manager.registry.get(task.id)
            assert actor is not None
            assert actor.alive

    def test_insert_spawns_actor(self, env, manager):
        db = env[0]
        task = tasks_mod.create_task(db, "demo", "New", pubsub=manager.pubsub)
        assert manager.registry.get(task.id) is not None

    def test_new_board_is_supervised(self, env, manager):
        db = env[0]
        boards_mod.create_board(db, "second", "Second", "/tmp", pubsub=manager.pubsub)
        boards_mod.add_column(db, "second", "Todo")
        task = tasks_mod.create_task(db, "second", "On second board", pubsub=manager.pubsub)
        assert manager.registry.get(task.id) is not None

    def test_external_delete_stops_actor(self, env, manager):
        db = env[0]
        task = tasks_mod.create_task(db, "demo", "Doomed", pubsub=manager.pubsub)
        actor = manager.registry.get(task.id)
        tasks_mod.delete_task(db, task.id, manager.pubsub)
        assert _wait_for(lambda: not actor.alive)
        assert _wait_for(lambda: manager.registry.get(task.id) is None)

    def test_move_to_foreign_column_rejected(self, env, manager):
        db = env[0]
        boards_mod.create_board(db, "other", "Other", "/tmp")
        foreign = boards_mod.add_column(db, "other", "Todo")
        task = tasks_mod.create_task(db, "demo", "Stay", pubsub=manager.pubsub)
        with pytest.raises(ValueError):
            manager.move(task.id, foreign.id)

    def test_unknown_task(self, manager):
        assert manager.move("missing", 1) is None
        assert manager.stop_execution("missing") is None


class TestCrashRecovery:
    def test_crashed_actor_is_restarted_and_heals(self, env, manager):
        db, _, cols = env
        hook = hooks_mod.create_hook(db, "demo", "Slow", command="sleep 10")
        hooks_mod.bind_hook(db, cols["Doing"].id, hook.id)
        task = tasks_mod.create_task(db, "demo", "Crashy", pubsub=manager.pubsub)
        assert manager.wait_idle(task.id, 10)

        manager.move(task.id, cols["Doing"].id)
        assert ledger.active_for_task(db, task.id)
        old = manager.registry.get(task.id)

        old._post("explode")
        assert _wait_for(lambda: not old.alive)
        assert _wait_for(
            lambda: (a := manager.registry.get(task.id)) is not None and a is not old and a.alive
        )
        assert manager.wait_idle(task.id, 10)

        rows = ledger.history_for_task(db, task.id)
        assert [(r.status, r.skip_reason) for r in rows] == [("cancelled", "server_restart")]
        assert tasks_mod.get_task(db, task.id).agent_status == "idle"

        # The restarted actor keeps serving calls
        moved = manager.move(task.id, cols["Todo"].id)
        assert moved.column_id == cols["Todo"].id

    def test_restart_limit(self, env, manager):
        db = env[0]
        task = tasks_mod.create_task(db, "demo", "Fragile", pubsub=manager.pubsub)

        for _ in range(2):
            actor = manager.registry.get(task.id)
            actor._post("explode")
            assert _wait_for(
                lambda: (a := manager.registry.get(task.id)) is not None and a is not actor
            )

        last = manager.registry.get(task.id)
        last._post("explode")
        assert _wait_for(lambda: not last.alive)
        assert _wait_for(lambda: manager.registry.get(task.id) is None)
