"""Tests for the hook execution ledger."""

import tempfile
from pathlib import Path

import pytest

from hookboard.core import boards as boards_mod
from hookboard.core import hooks as hooks_mod
from hookboard.core import ledger
from hookboard.core import tasks as tasks_mod
from hookboard.db.engine import init_db


@pytest.fixture
def env():
    """A board with one column, one bound hook and one task."""
    with tempfile.TemporaryDirectory() as tmp:
        db = init_db(Path(tmp) / "test.db")
        boards_mod.create_board(db, "b", "Board", tmp)
        column = boards_mod.add_column(db, "b", "Todo")
        hook = hooks_mod.create_hook(db, "b", "Lint", command="make lint")
        binding = hooks_mod.bind_hook(db, column.id, hook.id)
        task = tasks_mod.create_task(db, "b", "Task")
        yield db, task, binding, hook, column
        db.close()


def _queue(env):
    db, task, binding, hook, column = env
    return ledger.queue_execution(db, task.id, binding, hook, column.id)


class TestTransitions:
    def test_happy_path(self, env):
        db = env[0]
        row = _queue(env)
        assert row.status == "pending"
        assert row.queued_at is not None
        assert row.started_at is None

        assert ledger.start_execution(db, row.id) is True
        assert ledger.complete_execution(db, row.id) is True
        row = ledger.get_execution(db, row.id)
        assert row.status == "completed"
        assert row.started_at is not None
        assert row.completed_at is not None
        assert row.result is None

    def test_complete_records_result(self, env):
        db = env[0]
        row = _queue(env)
        ledger.start_execution(db, row.id)
        assert ledger.complete_execution(db, row.id, "waiting_for_user") is True
        row = ledger.get_execution(db, row.id)
        assert row.status == "completed"
        assert row.result == "waiting_for_user"

    def test_fail_keeps_message(self, env):
        db = env[0]
        row = _queue(env)
        ledger.start_execution(db, row.id)
        assert ledger.fail_execution(db, row.id, "Hook 'Lint' timed out") is True
        row = ledger.get_execution(db, row.id)
        assert row.status == "failed"
        assert row.error_message == "Hook 'Lint' timed out"

    def test_cannot_complete_pending(self, env):
        db = env[0]
        row = _queue(env)
        assert ledger.complete_execution(db, row.id) is False
        assert ledger.get_execution(db, row.id).status == "pending"

    def test_terminal_rows_do_not_regress(self, env):
        db = env[0]
        row = _queue(env)
        ledger.start_execution(db, row.id)
        ledger.cancel_execution(db, row.id, "column_change")
        assert ledger.complete_execution(db, row.id) is False
        assert ledger.fail_execution(db, row.id, "late") is False
        assert ledger.start_execution(db, row.id) is False
        row = ledger.get_execution(db, row.id)
        assert row.status == "cancelled"
        assert row.skip_reason == "column_change"

    def test_cancelled_before_start_has_no_started_at(self, env):
        db = env[0]
        row = _queue(env)
        ledger.cancel_execution(db, row.id, "user_cancelled")
        row = ledger.get_execution(db, row.id)
        assert row.started_at is None
        assert row.completed_at is not None


class TestBulkOperations:
    def test_cancel_active_only_touches_active_rows(self, env):
        db, task = env[0], env[1]
        done, running, pending = _queue(env), _queue(env), _queue(env)
        ledger.start_execution(db, done.id)
        ledger.complete_execution(db, done.id)
        ledger.start_execution(db, running.id)

        assert ledger.cancel_active(db, task.id, "server_restart") == 2
        assert ledger.get_execution(db, done.id).status == "completed"
        for row_id in (running.id, pending.id):
            row = ledger.get_execution(db, row_id)
            assert row.status == "cancelled"
            assert row.skip_reason == "server_restart"
        assert ledger.active_for_task(db, task.id) == []

    def test_cancel_pending_leaves_running(self, env):
        db, task = env[0], env[1]
        running, pending = _queue(env), _queue(env)
        ledger.start_execution(db, running.id)
        assert ledger.cancel_pending(db, task.id, "error") == 1
        assert ledger.get_execution(db, running.id).status == "running"
        assert [r.id for r in ledger.pending_for_task(db, task.id)] == []

    def test_record_skipped(self, env):
        db, task, binding, hook, column = env
        row = ledger.record_skipped(db, task.id, binding, hook, column.id, "disabled")
        assert row.status == "skipped"
        assert row.skip_reason == "disabled"
        assert row.completed_at is not None
        assert row.hook_name == "Lint"

    def test_history_is_oldest_first(self, env):
        db, task = env[0], env[1]
        ids = [_queue(env).id for _ in range(3)]
        assert [r.id for r in ledger.history_for_task(db, task.id)] == ids

    def test_for_task_and_column(self, env):
        db, task, _, _, column = env
        _queue(env)
        assert len(ledger.for_task_and_column(db, task.id, column.id)) == 1
        assert ledger.for_task_and_column(db, task.id, column.id + 100) == []

    def test_rows_removed_with_task(self, env):
        db, task = env[0], env[1]
        row = _queue(env)
        tasks_mod.delete_task(db, task.id)
        assert ledger.get_execution(db, row.id) is None

    def test_rows_outlive_their_binding(self, env):
        db, binding = env[0], env[2]
        row = _queue(env)
        assert row.column_hook_id == binding.id
        assert hooks_mod.unbind_hook(db, binding.id) is True
        row = ledger.get_execution(db, row.id)
        assert row is not None
        assert row.column_hook_id is None
        assert row.hook_name == "Lint"
