"""Entry point to the hook engine: one supervisor per board, one actor per task."""

import logging
import threading
import time
from collections.abc import Callable
from pathlib import Path

from hookboard.actors.board_supervisor import ActorRegistry, BoardSupervisor
from hookboard.actors.hook_runner import HookRunner
from hookboard.actors.task_actor import ActorStopped, TaskActor
from hookboard.config import Config, get_config
from hookboard.core import boards as boards_mod
from hookboard.core import ledger
from hookboard.core import tasks as tasks_mod
from hookboard.db.engine import get_db
from hookboard.db.models import HookExecution, Task
from hookboard.events import BOARDS_TOPIC, HOOKS_TOPIC, INSERT, BoardChange, HookEvent, PubSub

logger = logging.getLogger(__name__)


class BoardManager:
    def __init__(
        self,
        db_path: Path | None = None,
        config: Config | None = None,
        pubsub: PubSub | None = None,
    ):
        self.config = config or get_config()
        self.db_path = db_path or self.config.db_path
        self.pubsub = pubsub or PubSub()
        self.runner = HookRunner(self.db_path, self.config, self.pubsub)
        self.registry = ActorRegistry()
        self._supervisors: dict[str, BoardSupervisor] = {}
        self._lock = threading.Lock()
        self._unsubscribe = None

    # ── Lifecycle ───────────────────────────────────────────────────────────

    def start(self) -> "BoardManager":
        """Start a supervisor for every board, and for boards created later."""
        self._unsubscribe = self.pubsub.subscribe(BOARDS_TOPIC, self._on_board_change)
        with get_db(self.db_path) as db:
            board_ids = [b.id for b in boards_mod.list_boards(db)]
        for board_id in board_ids:
            self.start_board(board_id)
        return self

    def start_board(self, board_id: str, spawn_existing: bool = True) -> BoardSupervisor:
        """Supervise a board. With spawn_existing=False actors start only on demand."""
        with self._lock:
            supervisor = self._supervisors.get(board_id)
            if supervisor is not None:
                return supervisor
            supervisor = BoardSupervisor(
                board_id, self.db_path, self.runner, self.pubsub, self.registry, self.config
            )
            self._supervisors[board_id] = supervisor
        return supervisor.start(spawn_existing)

    def shutdown(self, timeout: float = 10.0):
        """Kill running hooks and stop all actors. Interrupted rows heal on next start."""
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None
        with self._lock:
            supervisors = list(self._supervisors.values())
            self._supervisors.clear()
        for supervisor in supervisors:
            supervisor.stop(timeout)

    def __enter__(self) -> "BoardManager":
        return self.start()

    def __exit__(self, *exc):
        self.shutdown()

    def _on_board_change(self, change: BoardChange):
        if change.kind == INSERT:
            self.start_board(change.board_id)

    # ── Task operations ─────────────────────────────────────────────────────

    def move(self, task_id: str, column_id: int) -> Task | None:
        """Move a task and queue the new column's hooks. None if the task is unknown."""
        with get_db(self.db_path) as db:
            task = tasks_mod.get_task(db, task_id)
            if not task:
                return None
            column = boards_mod.get_column(db, column_id)
            if not column or column.board_id != task.board_id:
                raise ValueError(f"Column {column_id} not found on board {task.board_id}")
        return self._call(task_id, lambda actor: actor.move(column_id))

    def stop_execution(self, task_id: str) -> Task | None:
        """Cancel running and queued hooks and reset the task to idle."""
        return self._call(task_id, lambda actor: actor.stop_execution())

    def clear_error(self, task_id: str) -> Task | None:
        return self._call(task_id, lambda actor: actor.clear_error())

    def delete_task(self, task_id: str) -> bool:
        """Cancel the task's hooks, then delete it."""
        result = self._call(task_id, lambda actor: actor.delete())
        return bool(result)

    def execution_history(self, task_id: str) -> list[HookExecution]:
        """Every hook attempt for a task, newest last."""
        with get_db(self.db_path) as db:
            return ledger.history_for_task(db, task_id)

    def subscribe(self, callback: Callable[[HookEvent], None]) -> Callable[[], None]:
        """Receive hook started/completed/failed events. Returns an unsubscribe function."""
        return self.pubsub.subscribe(HOOKS_TOPIC, callback)

    def wait_idle(self, task_id: str | None = None, timeout: float = 30.0) -> bool:
        """Wait until one task (or every task) has no running or queued hooks."""
        deadline = time.monotonic() + timeout
        if task_id is not None:
            actors = [a for a in [self.registry.get(task_id)] if a is not None]
        else:
            actors = self.registry.all()
        for actor in actors:
            remaining = max(0.0, deadline - time.monotonic())
            if not actor.wait_idle(remaining):
                return False
        return True

    def actor_for(self, task_id: str) -> TaskActor | None:
        """The task's live actor, starting one if its board is supervised."""
        actor = self.registry.get(task_id)
        if actor is not None and actor.alive:
            return actor
        with get_db(self.db_path) as db:
            task = tasks_mod.get_task(db, task_id)
        if not task:
            return None
        supervisor = self.start_board(task.board_id, spawn_existing=False)
        return supervisor.start_actor(task_id)

    def _call(self, task_id: str, fn):
        for attempt in range(2):
            actor = self.actor_for(task_id)
            if actor is None:
                return None
            try:
                return fn(actor)
            except ActorStopped:
                if attempt:
                    raise
                logger.warning("Actor for task %s went away; retrying once", task_id)
        return None
