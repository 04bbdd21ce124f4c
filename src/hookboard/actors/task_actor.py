"""Per-task actor: serializes every hook and status change for one task.

The actor owns a mailbox thread, its task's CommandQueue and the RunHandle of
the hook currently running. Callers talk to it through synchronous calls
(``move``, ``stop_execution``, ``clear_error``, ``delete``) that return once
the actor has fully processed the request, or through fire-and-forget casts
(``sync``). Hook results come back from the runner's worker thread as
``hook_finished`` messages, so all task and ledger writes happen on the
actor's own thread.
"""

import logging
import queue
import sqlite3
import threading
from collections.abc import Callable
from concurrent.futures import Future
from dataclasses import dataclass, field
from pathlib import Path

from hookboard.actors.command_queue import CommandQueue, HookCommand
from hookboard.actors.hook_runner import HookRunner, RunHandle
from hookboard.actors.results import CANCELLED, INTERNAL_ERROR, HookResult, format_error_message
from hookboard.config import Config, get_config
from hookboard.core import boards as boards_mod
from hookboard.core import hooks as hooks_mod
from hookboard.core import ledger
from hookboard.core import tasks as tasks_mod
from hookboard.db.engine import init_db
from hookboard.db.models import (
    ERROR,
    EXECUTING,
    IDLE,
    SKIP_COLUMN_CHANGE,
    SKIP_DISABLED,
    SKIP_ERROR,
    SKIP_SERVER_RESTART,
    SKIP_USER_CANCELLED,
    Task,
)
from hookboard.events import (
    HOOK_COMPLETED,
    HOOK_FAILED,
    HOOK_STARTED,
    HOOKS_TOPIC,
    HookEvent,
    PubSub,
)

logger = logging.getLogger(__name__)


class ActorStopped(RuntimeError):
    """The actor is no longer accepting messages."""


class ActorCrashed(ActorStopped):
    """The actor died while a call was outstanding."""


@dataclass
class _Message:
    kind: str
    args: tuple = ()
    reply: Future | None = field(default=None, compare=False)


class TaskActor:
    def __init__(
        self,
        task_id: str,
        db_path: Path,
        runner: HookRunner,
        pubsub: PubSub | None = None,
        config: Config | None = None,
        on_exit: Callable[["TaskActor"], None] | None = None,
        on_crash: Callable[["TaskActor"], None] | None = None,
        board_id: str | None = None,
    ):
        self.task_id = task_id
        self.board_id = board_id
        self.db_path = db_path
        self.runner = runner
        self.pubsub = pubsub
        self.config = config or get_config()
        self.on_exit = on_exit
        self.on_crash = on_crash

        self._mailbox: queue.Queue[_Message] = queue.Queue()
        self._lock = threading.Lock()
        self._idle = threading.Event()
        self._alive = False
        self._thread: threading.Thread | None = None
        self._db: sqlite3.Connection | None = None

        self._queue = CommandQueue.new()
        self._handle: RunHandle | None = None
        self._column_id: int | None = None
        self._terminating = False

    # ── Lifecycle ───────────────────────────────────────────────────────────

    def start(self) -> "TaskActor":
        """Start the mailbox thread. The first message heals and enters the current column."""
        with self._lock:
            self._alive = True
        self._thread = threading.Thread(
            target=self._run, name=f"task-actor-{self.task_id}", daemon=True
        )
        self._post("init")
        self._thread.start()
        return self

    @property
    def alive(self) -> bool:
        return self._alive

    def shutdown(self, timeout: float = 10.0):
        """Stop the actor and kill any running hook; ledger rows are left for self-heal."""
        self._post("shutdown")
        self.join(timeout)

    def join(self, timeout: float | None = None):
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until no hook is running and the mailbox is drained."""
        return self._idle.wait(timeout)

    # ── Public API ──────────────────────────────────────────────────────────

    def move(self, column_id: int, timeout: float | None = None) -> Task | None:
        return self._call("move", column_id, timeout=timeout)

    def stop_execution(self, timeout: float | None = None) -> Task | None:
        return self._call("stop_execution", timeout=timeout)

    def clear_error(self, timeout: float | None = None) -> Task | None:
        return self._call("clear_error", timeout=timeout)

    def delete(self, timeout: float | None = None) -> bool:
        return self._call("delete", timeout=timeout)

    def sync(self):
        """Re-read the task and enter its column if it changed behind the actor's back."""
        self._post("sync")

    def terminate(self):
        """Run the delete path without waiting, for tasks already removed elsewhere."""
        self._post("delete")

    # ── Mailbox ─────────────────────────────────────────────────────────────

    def _call(self, kind: str, *args, timeout: float | None = None):
        if threading.current_thread() is self._thread:
            raise RuntimeError(f"Task actor {self.task_id} cannot call itself")
        reply: Future = Future()
        self._post(kind, *args, reply=reply)
        return reply.result(timeout=timeout or self.config.call_timeout)

    def _post(self, kind: str, *args, reply: Future | None = None):
        with self._lock:
            if not self._alive:
                if reply is not None:
                    reply.set_exception(ActorStopped(f"Task actor {self.task_id} is stopped"))
                else:
                    logger.debug("Dropped %s for stopped actor %s", kind, self.task_id)
                return
            self._idle.clear()
            self._mailbox.put(_Message(kind, args, reply))

    def _run(self):
        crashed = False
        try:
            self._db = init_db(self.db_path)
            while not self._terminating:
                msg = self._mailbox.get()
                try:
                    result = self._dispatch(msg)
                except Exception as e:
                    if msg.reply is not None:
                        msg.reply.set_exception(ActorCrashed(str(e)))
                    raise
                if msg.reply is not None:
                    msg.reply.set_result(result)
                with self._lock:
                    if not self._queue.executing and self._mailbox.empty():
                        self._idle.set()
        except Exception:
            logger.exception("Task actor %s crashed", self.task_id)
            crashed = True
        finally:
            self._close(crashed)

    def _close(self, crashed: bool):
        if self._handle is not None:
            self._handle.stop()
            self._handle = None
        with self._lock:
            self._alive = False
            self._idle.set()
        while True:
            try:
                msg = self._mailbox.get_nowait()
            except queue.Empty:
                break
            if msg.reply is not None:
                error = ActorCrashed if crashed else ActorStopped
                msg.reply.set_exception(error(f"Task actor {self.task_id} exited"))
        if self._db is not None:
            self._db.close()
            self._db = None

        callback = self.on_crash if crashed else self.on_exit
        if callback is not None:
            callback(self)

    def _dispatch(self, msg: _Message):
        if msg.kind == "init":
            return self._handle_init()
        if msg.kind == "move":
            return self._handle_move(*msg.args)
        if msg.kind == "sync":
            return self._handle_sync()
        if msg.kind == "hook_finished":
            return self._handle_hook_finished(*msg.args)
        if msg.kind == "stop_execution":
            return self._handle_stop_execution()
        if msg.kind == "clear_error":
            return self._handle_clear_error()
        if msg.kind == "delete":
            return self._handle_delete()
        if msg.kind == "shutdown":
            self._terminating = True
            return None
        raise ValueError(f"Unknown message for task actor: {msg.kind}")

    # ── Handlers ────────────────────────────────────────────────────────────

    def _handle_init(self):
        task = self._task()
        if not task:
            logger.info("Task %s is gone; actor exiting", self.task_id)
            self._terminating = True
            return None

        healed = ledger.cancel_active(self._db, self.task_id, SKIP_SERVER_RESTART)
        if task.agent_status == EXECUTING:
            tasks_mod.set_agent_status(self._db, self.task_id, IDLE, pubsub=self.pubsub)
        if healed:
            logger.warning("Self-healed %d interrupted hook(s) for task %s", healed, self.task_id)

        self._column_id = task.column_id
        self._enter_column(task.column_id, restart_recovery=True)
        return None

    def _handle_move(self, column_id: int) -> Task | None:
        if not self._task():
            return None
        if not boards_mod.get_column(self._db, column_id):
            logger.warning("Task %s cannot move to unknown column %s", self.task_id, column_id)
            return self._task()

        self._cancel(SKIP_COLUMN_CHANGE)
        self._column_id = column_id
        tasks_mod.update_task_column(self._db, self.task_id, column_id, self.pubsub)
        self._enter_column(column_id)
        return self._task()

    def _handle_sync(self):
        task = self._task()
        if task and task.column_id != self._column_id:
            logger.info(
                "Task %s changed column %s -> %s externally",
                self.task_id, self._column_id, task.column_id,
            )
            self._handle_move(task.column_id)

    def _handle_stop_execution(self) -> Task | None:
        if not self._task():
            return None
        self._cancel(SKIP_USER_CANCELLED)
        return tasks_mod.clear_error(self._db, self.task_id, self.pubsub)

    def _handle_clear_error(self) -> Task | None:
        task = self._task()
        if task and task.agent_status == ERROR:
            return tasks_mod.clear_error(self._db, self.task_id, self.pubsub)
        return task

    def _handle_delete(self) -> bool:
        self._cancel(SKIP_USER_CANCELLED)
        deleted = tasks_mod.delete_task(self._db, self.task_id, self.pubsub)
        self._terminating = True
        return deleted

    def _handle_hook_finished(self, execution_id: int, result: HookResult):
        current = self._queue.current
        if current is None or current.execution_id != execution_id:
            logger.debug("Ignoring stale result for execution %s", execution_id)
            return
        self._handle = None
        self._queue = self._queue.complete_current()
        self._apply_result(current, result)

    # ── Column transition ───────────────────────────────────────────────────

    def _cancel(self, reason: str):
        """Kill the running hook, cancel every active row and drop the queue."""
        if self._handle is not None:
            self._handle.stop()
            self._handle = None
        ledger.cancel_active(self._db, self.task_id, reason)
        self._queue = self._queue.clear()
        task = self._task()
        if task and task.agent_status == EXECUTING:
            tasks_mod.set_agent_status(self._db, self.task_id, IDLE, pubsub=self.pubsub)

    def _enter_column(self, column_id: int, restart_recovery: bool = False):
        task = self._task()
        column = boards_mod.get_column(self._db, column_id)
        if not task or not column:
            self._finish()
            return

        candidates = []
        for binding in hooks_mod.list_column_hooks(self._db, column_id):
            hook = hooks_mod.resolve_hook(self._db, binding.hook_id)
            if hook is None:
                logger.warning("Column %s binds unknown hook %s", column_id, binding.hook_id)
                continue
            if binding.execute_once and binding.id in task.executed_hooks:
                continue
            candidates.append((binding, hook))

        if restart_recovery:
            seen = {
                e.column_hook_id
                for e in ledger.for_task_and_column(self._db, self.task_id, column_id)
            }
            candidates = [(b, h) for b, h in candidates if b.id not in seen]

        if not column.hooks_enabled:
            for binding, hook in candidates:
                ledger.record_skipped(self._db, self.task_id, binding, hook, column_id, SKIP_DISABLED)
            candidates = []
        elif task.agent_status == ERROR:
            runnable = []
            for binding, hook in candidates:
                if binding.transparent:
                    runnable.append((binding, hook))
                else:
                    ledger.record_skipped(self._db, self.task_id, binding, hook, column_id, SKIP_ERROR)
            candidates = runnable

        commands = []
        for binding, hook in candidates:
            row = ledger.queue_execution(self._db, self.task_id, binding, hook, column_id)
            commands.append(
                HookCommand(
                    execution_id=row.id,
                    column_hook_id=binding.id,
                    hook_id=hook.id,
                    hook_name=hook.name,
                    transparent=binding.transparent,
                    execute_once=binding.execute_once,
                    settings=binding.hook_settings,
                )
            )
        self._queue = CommandQueue.new().push_all(commands)
        self._run_next()

    def _run_next(self):
        popped = self._queue.pop()
        if popped is None:
            self._finish()
            return
        command, self._queue = popped

        if not ledger.start_execution(self._db, command.execution_id):
            self._queue = self._queue.complete_current()
            self._run_next()
            return

        hook = hooks_mod.resolve_hook(self._db, command.hook_id)
        if hook is None:
            self._queue = self._queue.complete_current()
            self._apply_result(command, HookResult.failure(INTERNAL_ERROR, "Hook no longer exists"))
            return

        if not command.transparent:
            tasks_mod.set_agent_status(
                self._db, self.task_id, EXECUTING, f"Executing {command.hook_name}", self.pubsub
            )
        self._publish(HOOK_STARTED, command)

        execution_id = command.execution_id
        self._handle = self.runner.start(
            hook,
            self.task_id,
            self._column_id,
            command.settings,
            on_done=lambda result: self._post("hook_finished", execution_id, result),
        )

    def _apply_result(self, command: HookCommand, result: HookResult):
        if result.status == CANCELLED:
            ledger.cancel_execution(self._db, command.execution_id, SKIP_USER_CANCELLED)
            self._run_next()
            return

        if result.succeeded:
            ledger.complete_execution(self._db, command.execution_id, result.status)
            if command.execute_once:
                tasks_mod.add_executed_hook(self._db, self.task_id, command.column_hook_id, self.pubsub)
            if not command.transparent:
                self._finish()
            self._publish(HOOK_COMPLETED, command, result=result.status, effects=result.effects)
            if result.move_to is not None:
                self._handle_move(result.move_to)
            else:
                self._run_next()
            return

        message = format_error_message(command.hook_name, result)
        ledger.fail_execution(self._db, command.execution_id, message)
        self._publish(HOOK_FAILED, command, result=result.status, error=message)
        if command.transparent:
            logger.info("Transparent hook %s failed for task %s", command.hook_name, self.task_id)
            self._run_next()
            return

        logger.warning("Hook %s failed for task %s: %s", command.hook_name, self.task_id, message)
        ledger.cancel_pending(self._db, self.task_id, SKIP_ERROR)
        self._queue = self._queue.clear()
        tasks_mod.set_error(self._db, self.task_id, message, self.pubsub)

    def _finish(self):
        task = self._task()
        if task and task.agent_status == EXECUTING:
            tasks_mod.set_agent_status(self._db, self.task_id, IDLE, pubsub=self.pubsub)

    # ── Helpers ─────────────────────────────────────────────────────────────

    def _task(self) -> Task | None:
        return tasks_mod.get_task(self._db, self.task_id)

    def _publish(self, event: str, command: HookCommand, **kwargs):
        if not self.pubsub:
            return
        self.pubsub.publish(
            HOOKS_TOPIC,
            HookEvent(
                event=event,
                hook_id=command.hook_id,
                hook_name=command.hook_name,
                task_id=self.task_id,
                column_id=self._column_id,
                execution_id=command.execution_id,
                transparent=command.transparent,
                **kwargs,
            ),
        )
