"""One supervisor per board: a pool of task actors plus the board watcher."""

import logging
import threading
import time
from pathlib import Path

from hookboard.actors.hook_runner import HookRunner
from hookboard.actors.task_actor import TaskActor
from hookboard.config import Config, get_config
from hookboard.core import tasks as tasks_mod
from hookboard.db.engine import get_db
from hookboard.events import DELETE, INSERT, UPDATE, PubSub, TaskChange, board_topic

logger = logging.getLogger(__name__)


class ActorRegistry:
    """Task actors addressed by task id, shared across boards."""

    def __init__(self):
        self._actors: dict[str, TaskActor] = {}
        self._lock = threading.Lock()

    def get(self, task_id: str) -> TaskActor | None:
        with self._lock:
            return self._actors.get(task_id)

    def register(self, actor: TaskActor) -> bool:
        """Add an actor unless a live one is already registered for its task."""
        with self._lock:
            existing = self._actors.get(actor.task_id)
            if existing is not None and existing.alive:
                return False
            self._actors[actor.task_id] = actor
            return True

    def unregister(self, actor: TaskActor):
        with self._lock:
            if self._actors.get(actor.task_id) is actor:
                del self._actors[actor.task_id]

    def all(self) -> list[TaskActor]:
        with self._lock:
            return list(self._actors.values())


class RestartLimiter:
    """Allow at most max_restarts per key within a sliding window."""

    def __init__(self, max_restarts: int, window_s: float):
        self.max_restarts = max(1, max_restarts)
        self.window_s = window_s
        self._history: dict[str, list[float]] = {}
        self._lock = threading.Lock()

    def allow(self, key: str, now: float | None = None) -> bool:
        """Record a restart for key if the window still has room."""
        now = time.monotonic() if now is None else now
        with self._lock:
            history = [t for t in self._history.get(key, []) if now - t <= self.window_s]
            if len(history) >= self.max_restarts:
                self._history[key] = history
                return False
            history.append(now)
            self._history[key] = history
            return True


class BoardWatcher:
    """Routes a board's task changes to task actors."""

    def __init__(self, supervisor: "BoardSupervisor"):
        self.supervisor = supervisor

    def __call__(self, change: TaskChange):
        task_id = change.task.id
        if change.kind == INSERT:
            self.supervisor.start_actor(task_id)
        elif change.kind == UPDATE:
            if "column_id" not in change.changed:
                return
            actor = self.supervisor.registry.get(task_id)
            if actor is None:
                self.supervisor.start_actor(task_id)
            else:
                actor.sync()
        elif change.kind == DELETE:
            actor = self.supervisor.registry.get(task_id)
            if actor is not None:
                actor.terminate()


class BoardSupervisor:
    def __init__(
        self,
        board_id: str,
        db_path: Path,
        runner: HookRunner,
        pubsub: PubSub,
        registry: ActorRegistry,
        config: Config | None = None,
    ):
        self.board_id = board_id
        self.db_path = db_path
        self.runner = runner
        self.pubsub = pubsub
        self.registry = registry
        self.config = config or get_config()
        self.watcher = BoardWatcher(self)
        self.limiter = RestartLimiter(self.config.max_restarts, self.config.restart_window)
        self._unsubscribe = None
        self._stopping = False

    def start(self, spawn_existing: bool = True) -> "BoardSupervisor":
        """Subscribe the watcher, then start an actor for every existing task."""
        self._unsubscribe = self.pubsub.subscribe(board_topic(self.board_id), self.watcher)
        if not spawn_existing:
            return self
        with get_db(self.db_path) as db:
            task_ids = [t.id for t in tasks_mod.list_tasks(db, self.board_id)]
        for task_id in task_ids:
            self.start_actor(task_id)
        logger.info("Board supervisor %s started with %d task(s)", self.board_id, len(task_ids))
        return self

    def stop(self, timeout: float = 10.0):
        self._stopping = True
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None
        actors = [a for a in self.registry.all() if a.board_id == self.board_id]
        for actor in actors:
            actor.shutdown(timeout)
        logger.info("Board supervisor %s stopped", self.board_id)

    def start_actor(self, task_id: str) -> TaskActor | None:
        if self._stopping:
            return None
        actor = TaskActor(
            task_id,
            self.db_path,
            self.runner,
            pubsub=self.pubsub,
            config=self.config,
            on_exit=self._on_actor_exit,
            on_crash=self._on_actor_crash,
            board_id=self.board_id,
        )
        if not self.registry.register(actor):
            return self.registry.get(task_id)
        return actor.start()

    def _on_actor_exit(self, actor: TaskActor):
        self.registry.unregister(actor)

    def _on_actor_crash(self, actor: TaskActor):
        self.registry.unregister(actor)
        if self._stopping:
            return
        if not self.limiter.allow(actor.task_id):
            logger.error(
                "Task actor %s crashed too often; not restarting (max %d in %ss)",
                actor.task_id, self.limiter.max_restarts, self.limiter.window_s,
            )
            return
        logger.warning("Restarting crashed task actor %s", actor.task_id)
        self.start_actor(actor.task_id)
