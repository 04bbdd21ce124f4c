"""Tests for board, column, hook and task operations."""

import tempfile
from pathlib import Path

import pytest

from hookboard.core import boards as boards_mod
from hookboard.core import hooks as hooks_mod
from hookboard.core import tasks as tasks_mod
from hookboard.db.engine import init_db
from hookboard.events import DELETE, INSERT, UPDATE, PubSub, board_topic


@pytest.fixture
def db():
    """Create a temporary SQLite database with one board."""
    with tempfile.TemporaryDirectory() as tmp:
        db_path = Path(tmp) / "test.db"
        conn = init_db(db_path)
        boards_mod.create_board(conn, "test", "Test Board", tmp)
        for name in ("Todo", "In Progress", "To Review", "Done"):
            boards_mod.add_column(conn, "test", name)
        yield conn
        conn.close()


def _column(db, name):
    return boards_mod.find_column_by_name(db, "test", name)


class TestSlugify:
    def test_basic(self):
        assert tasks_mod.slugify("Hello World") == "hello-world"

    def test_special_chars(self):
        assert tasks_mod.slugify("Auth: Login & Signup!") == "auth-login-signup"

    def test_truncation(self):
        assert len(tasks_mod.slugify("a" * 100)) <= 60


class TestTaskCRUD:
    def test_create_task_defaults_to_first_column(self, db):
        task = tasks_mod.create_task(db, "test", "Build login page")
        assert task.id == "build-login-page"
        assert task.column_id == _column(db, "Todo").id
        assert task.agent_status == "idle"
        assert task.in_progress is False
        assert task.executed_hooks == []

    def test_create_duplicate_gets_suffix(self, db):
        t1 = tasks_mod.create_task(db, "test", "Same")
        t2 = tasks_mod.create_task(db, "test", "Same")
        assert (t1.id, t2.id) == ("same", "same-2")

    def test_create_in_foreign_column_rejected(self, db):
        boards_mod.create_board(db, "other", "Other", "/tmp")
        other = boards_mod.add_column(db, "other", "Todo")
        with pytest.raises(ValueError):
            tasks_mod.create_task(db, "test", "Nope", column_id=other.id)

    def test_get_nonexistent_task(self, db):
        assert tasks_mod.get_task(db, "nope") is None

    def test_list_tasks_by_column(self, db):
        doing = _column(db, "In Progress")
        tasks_mod.create_task(db, "test", "A")
        tasks_mod.create_task(db, "test", "B", column_id=doing.id)
        assert len(tasks_mod.list_tasks(db, "test")) == 2
        assert [t.title for t in tasks_mod.list_tasks(db, "test", doing.id)] == ["B"]

    def test_status_keeps_in_progress_in_sync(self, db):
        task = tasks_mod.create_task(db, "test", "Status")
        task = tasks_mod.set_agent_status(db, task.id, "executing", "Executing Lint")
        assert task.in_progress is True
        assert task.agent_status_message == "Executing Lint"
        task = tasks_mod.set_agent_status(db, task.id, "idle")
        assert task.in_progress is False
        assert task.agent_status_message is None

    def test_set_and_clear_error(self, db):
        task = tasks_mod.create_task(db, "test", "Err")
        task = tasks_mod.set_error(db, task.id, "Hook 'X' failed: boom")
        assert task.agent_status == "error"
        assert task.error_message == "Hook 'X' failed: boom"
        task = tasks_mod.clear_error(db, task.id)
        assert task.agent_status == "idle"
        assert task.error_message is None

    def test_executed_hooks_is_append_only(self, db):
        task = tasks_mod.create_task(db, "test", "Once")
        tasks_mod.add_executed_hook(db, task.id, 7)
        tasks_mod.add_executed_hook(db, task.id, 7)
        tasks_mod.set_error(db, task.id, "boom")
        task = tasks_mod.clear_error(db, task.id)
        assert task.executed_hooks == [7]

    def test_invalid_status_rejected(self, db):
        task = tasks_mod.create_task(db, "test", "Bad")
        with pytest.raises(ValueError):
            tasks_mod.set_agent_status(db, task.id, "running")

    def test_delete_task(self, db):
        task = tasks_mod.create_task(db, "test", "Gone")
        assert tasks_mod.delete_task(db, task.id) is True
        assert tasks_mod.get_task(db, task.id) is None
        assert tasks_mod.delete_task(db, task.id) is False


class TestChangeFeed:
    def test_publishes_insert_update_delete(self, db):
        pubsub = PubSub()
        changes = []
        pubsub.subscribe(board_topic("test"), changes.append)

        task = tasks_mod.create_task(db, "test", "Feed", pubsub=pubsub)
        tasks_mod.update_task_column(db, task.id, _column(db, "Done").id, pubsub)
        tasks_mod.delete_task(db, task.id, pubsub)

        assert [c.kind for c in changes] == [INSERT, UPDATE, DELETE]
        assert changes[1].changed == ("column_id",)
        assert changes[1].task.column_id == _column(db, "Done").id

    def test_failing_subscriber_does_not_break_publish(self, db):
        pubsub = PubSub()
        received = []

        def broken(change):
            raise RuntimeError("boom")

        pubsub.subscribe(board_topic("test"), broken)
        pubsub.subscribe(board_topic("test"), received.append)
        tasks_mod.create_task(db, "test", "Still works", pubsub=pubsub)
        assert len(received) == 1

    def test_unsubscribe(self, db):
        pubsub = PubSub()
        received = []
        unsubscribe = pubsub.subscribe(board_topic("test"), received.append)
        unsubscribe()
        tasks_mod.create_task(db, "test", "Quiet", pubsub=pubsub)
        assert received == []


class TestColumnLookup:
    def test_find_by_name_ignores_case(self, db):
        assert _column(db, "in progress").name == "In Progress"
        assert _column(db, "  DONE ") is not None
        assert _column(db, "missing") is None

    def test_next_column(self, db):
        todo = _column(db, "Todo")
        assert boards_mod.find_next_column(db, todo.id).name == "In Progress"
        assert boards_mod.find_next_column(db, _column(db, "Done").id) is None

    def test_review_and_in_progress_columns(self, db):
        assert boards_mod.find_review_column(db, "test").name == "To Review"
        assert boards_mod.find_in_progress_column(db, "test").name == "In Progress"

    def test_hooks_enabled_setting(self, db):
        todo = _column(db, "Todo")
        assert todo.hooks_enabled is True
        todo = boards_mod.update_column_settings(db, todo.id, hooks_enabled=False)
        assert todo.hooks_enabled is False


class TestHooks:
    def test_create_script_hook(self, db):
        hook = hooks_mod.create_hook(db, "test", "Run Lint", command="make lint")
        assert hook.id == "run-lint"
        assert hook.kind == "script"
        assert hook.working_directory == "worktree"

    def test_script_hook_needs_command(self, db):
        with pytest.raises(ValueError):
            hooks_mod.create_hook(db, "test", "Empty")

    def test_agent_hook(self, db):
        hook = hooks_mod.create_hook(
            db, "test", "Review", kind="agent", agent_prompt="Review {title}",
            agent_executor="codex", agent_auto_approve=True,
        )
        assert hook.kind == "agent"
        assert hook.agent_executor == "codex"
        assert hook.agent_auto_approve is True

    def test_system_hooks_are_read_only(self, db):
        with pytest.raises(ValueError):
            hooks_mod.update_hook(db, "system:play-sound", name="Loud")
        with pytest.raises(ValueError):
            hooks_mod.delete_hook(db, "system:play-sound")

    def test_bindings_sorted_by_position_then_insertion(self, db):
        todo = _column(db, "Todo")
        a = hooks_mod.create_hook(db, "test", "A", command="true")
        b = hooks_mod.create_hook(db, "test", "B", command="true")
        c = hooks_mod.create_hook(db, "test", "C", command="true")
        hooks_mod.bind_hook(db, todo.id, c.id, position=5)
        hooks_mod.bind_hook(db, todo.id, a.id, position=1)
        hooks_mod.bind_hook(db, todo.id, b.id, position=1)
        order = [ch.hook_id for ch in hooks_mod.list_column_hooks(db, todo.id)]
        assert order == ["a", "b", "c"]

    def test_bind_system_hook_uses_defaults(self, db):
        todo = _column(db, "Todo")
        binding = hooks_mod.bind_hook(db, todo.id, "system:move-task")
        assert binding.transparent is True
        binding = hooks_mod.bind_hook(db, todo.id, "system:create-branch")
        assert binding.execute_once is True

    def test_bind_unknown_hook(self, db):
        todo = _column(db, "Todo")
        with pytest.raises(ValueError):
            hooks_mod.bind_hook(db, todo.id, "no-such-hook")

    def test_required_binding_cannot_be_removed(self, db):
        todo = _column(db, "Todo")
        binding = hooks_mod.bind_hook(db, todo.id, "system:play-sound", removable=False)
        with pytest.raises(ValueError):
            hooks_mod.unbind_hook(db, binding.id)

    def test_delete_hook_removes_bindings(self, db):
        todo = _column(db, "Todo")
        hook = hooks_mod.create_hook(db, "test", "Temp", command="true")
        hooks_mod.bind_hook(db, todo.id, hook.id)
        assert hooks_mod.delete_hook(db, hook.id) is True
        assert hooks_mod.list_column_hooks(db, todo.id) == []

    def test_resolve_hook(self, db):
        hook = hooks_mod.create_hook(db, "test", "Mine", command="true")
        assert hooks_mod.resolve_hook(db, hook.id).name == "Mine"
        assert hooks_mod.resolve_hook(db, "system:play-sound").kind == "system"
        assert hooks_mod.resolve_hook(db, "system:nope") is None
        assert hooks_mod.resolve_hook(db, "nope") is None
