"""Runs one hook to completion or cancellation.

Script hooks run as a temporary bash script, agent hooks run an agent CLI,
and system hooks dispatch through the registry. Every spawned process gets
its own process group so ``RunHandle.stop`` can kill the whole tree.
"""

import json
import logging
import os
import signal
import sqlite3
import subprocess
import tempfile
import threading
from collections.abc import Callable
from pathlib import Path

from hookboard.actors.results import (
    AGENT_ERROR,
    EXIT_CODE,
    INTERNAL_ERROR,
    NOT_FOUND,
    PERMISSION_DENIED,
    TIMEOUT,
    WAITING_FOR_USER,
    HookResult,
)
from hookboard.config import Config, get_config
from hookboard.core import boards as boards_mod
from hookboard.core import tasks as tasks_mod
from hookboard.db.engine import init_db
from hookboard.db.models import Hook, Task
from hookboard.events import PubSub
from hookboard.system_hooks import registry
from hookboard.system_hooks.base import SystemContext

logger = logging.getLogger(__name__)

# Executors whose CLI can report a structured JSON result
JSON_EXECUTORS = ("claude_code", "cursor_agent")


# ── Handles ─────────────────────────────────────────────────────────────────


class RunHandle:
    """A cancellable in-flight hook run."""

    def __init__(self, hook: Hook):
        self.hook = hook
        self._lock = threading.Lock()
        self._proc: subprocess.Popen | None = None
        self._thread: threading.Thread | None = None
        self._stopped = False

    @property
    def stopped(self) -> bool:
        return self._stopped

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc else None

    def attach(self, proc: subprocess.Popen) -> bool:
        """Register a spawned process. False if the run was already stopped."""
        with self._lock:
            if self._stopped:
                _kill_group(proc)
                proc.wait()
                return False
            self._proc = proc
            return True

    def stop(self, join_timeout: float = 10.0):
        """Kill the run's process group and wait for it. Safe to call repeatedly."""
        with self._lock:
            self._stopped = True
            proc = self._proc
        if proc is not None and proc.poll() is None:
            _kill_group(proc)
            try:
                proc.wait(timeout=join_timeout)
            except subprocess.TimeoutExpired:
                logger.error("Process %s for hook %s did not exit", proc.pid, self.hook.name)
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=join_timeout)

    def join(self, timeout: float | None = None):
        if self._thread is not None:
            self._thread.join(timeout)


def _kill_group(proc: subprocess.Popen):
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass  # Already exited
    except PermissionError:
        proc.kill()


# ── Runner ──────────────────────────────────────────────────────────────────


class HookRunner:
    def __init__(
        self,
        db_path: Path | None = None,
        config: Config | None = None,
        pubsub: PubSub | None = None,
    ):
        self.config = config or get_config()
        self.db_path = db_path or self.config.db_path
        self.pubsub = pubsub

    def run_once(
        self,
        hook: Hook,
        working_dir: str | None,
        timeout: float | None = None,
        prompt: str | None = None,
        context: SystemContext | None = None,
    ) -> HookResult:
        """Run a hook in the calling thread.

        System hooks need a ``context`` naming the task they act on.
        """
        handle = RunHandle(hook)
        if hook.kind == "system":
            if context is None:
                raise ValueError(f"System hook {hook.id} needs a task context")
            if context.run_agent is None:
                agent_timeout = timeout or self.config.agent_timeout

                def run_agent(prompt, executor="claude_code", auto_approve=False):
                    return self._run_agent(
                        handle, prompt, executor, auto_approve, working_dir, agent_timeout
                    )

                context.run_agent = run_agent
            return registry.execute(hook.id, context)
        if hook.kind == "agent":
            return self._run_agent(
                handle,
                prompt or hook.agent_prompt or "",
                hook.agent_executor,
                hook.agent_auto_approve,
                working_dir,
                timeout or hook.timeout_seconds or self.config.agent_timeout,
            )
        if hook.kind == "script":
            return self._run_script(
                handle,
                hook.command or "",
                working_dir,
                timeout or hook.timeout_seconds or self.config.hook_timeout,
            )
        raise ValueError(f"run_once cannot run {hook.kind} hooks")

    def start(
        self,
        hook: Hook,
        task_id: str,
        column_id: int | None,
        settings: dict,
        on_done: Callable[[HookResult], None],
    ) -> RunHandle:
        """Run a hook on a worker thread and report its result through on_done."""
        handle = RunHandle(hook)

        def target():
            try:
                result = self._execute(handle, hook, task_id, column_id, settings)
            except Exception as e:
                logger.exception("Hook %s crashed for task %s", hook.name, task_id)
                result = HookResult.failure(INTERNAL_ERROR, str(e))
            if handle.stopped:
                result = HookResult.cancelled()
            on_done(result)

        handle._thread = threading.Thread(
            target=target, name=f"hook-{task_id}-{hook.id}", daemon=True
        )
        handle._thread.start()
        return handle

    def _execute(
        self,
        handle: RunHandle,
        hook: Hook,
        task_id: str,
        column_id: int | None,
        settings: dict,
    ) -> HookResult:
        db = init_db(self.db_path)
        try:
            task = tasks_mod.get_task(db, task_id)
            if not task:
                return HookResult.skipped(f"Task {task_id} no longer exists")
            working_dir = self.resolve_working_dir(db, hook, task)

            if hook.kind == "system":
                timeout = self.config.agent_timeout

                def run_agent(prompt, executor="claude_code", auto_approve=False):
                    return self._run_agent(
                        handle, prompt, executor, auto_approve, working_dir, timeout
                    )

                ctx = SystemContext(
                    db=db,
                    task=task,
                    column_id=column_id,
                    settings=settings,
                    pubsub=self.pubsub,
                    run_agent=run_agent,
                )
                return registry.execute(hook.id, ctx)

            if hook.kind == "agent":
                return self._run_agent(
                    handle,
                    render_prompt(hook.agent_prompt or "", task),
                    hook.agent_executor,
                    hook.agent_auto_approve,
                    working_dir,
                    hook.timeout_seconds or self.config.agent_timeout,
                )

            return self._run_script(
                handle,
                hook.command or "",
                working_dir,
                hook.timeout_seconds or self.config.hook_timeout,
            )
        finally:
            db.close()

    def resolve_working_dir(
        self, db: sqlite3.Connection, hook: Hook, task: Task
    ) -> str | None:
        """The task worktree, or the board's repo for project_root hooks and tasks without one."""
        if hook.working_directory == "worktree" and task.worktree_path:
            return task.worktree_path
        board = boards_mod.get_board(db, task.board_id)
        return board.repo_path if board else None

    # ── Script hooks ────────────────────────────────────────────────────────

    def _run_script(
        self,
        handle: RunHandle,
        command: str,
        working_dir: str | None,
        timeout: float,
    ) -> HookResult:
        if not working_dir or not Path(working_dir).is_dir():
            logger.info("Skipping hook %s: working directory %s missing", handle.hook.name, working_dir)
            return HookResult.skipped(f"Working directory not found: {working_dir}")

        has_shebang = command.startswith("#!")
        script = command if has_shebang else f"#!{self.config.shell}\nset -e\n{command}\n"

        fd, script_path = tempfile.mkstemp(prefix="hookboard-", suffix=".sh")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(script)
            os.chmod(script_path, 0o700)
            cmd = [script_path] if has_shebang else [self.config.shell, script_path]
            return self._communicate(handle, cmd, working_dir, timeout)
        finally:
            Path(script_path).unlink(missing_ok=True)

    # ── Agent hooks ─────────────────────────────────────────────────────────

    def _run_agent(
        self,
        handle: RunHandle,
        prompt: str,
        executor: str,
        auto_approve: bool,
        working_dir: str | None,
        timeout: float,
    ) -> HookResult:
        if not working_dir or not Path(working_dir).is_dir():
            return HookResult.skipped(f"Working directory not found: {working_dir}")

        cmd = self.build_agent_command(prompt, executor, auto_approve)
        result = self._communicate(handle, cmd, working_dir, timeout)
        if result.status != "ok" or executor not in JSON_EXECUTORS:
            return result
        return parse_agent_output(result.output)

    def build_agent_command(self, prompt: str, executor: str, auto_approve: bool) -> list[str]:
        """Build the CLI invocation for an agent executor."""
        if executor == "claude_code":
            cmd = [self.config.agent_command, "-p", prompt, "--output-format", "json"]
            cmd += ["--permission-mode", "bypassPermissions" if auto_approve else "acceptEdits"]
        elif executor == "gemini_cli":
            cmd = ["gemini", "-p", prompt]
            if auto_approve:
                cmd.append("--yolo")
        elif executor == "codex":
            cmd = ["codex", "exec", prompt]
            if auto_approve:
                cmd.append("--full-auto")
        elif executor == "opencode":
            cmd = ["opencode", "run", prompt]
        elif executor == "cursor_agent":
            cmd = ["cursor-agent", "-p", prompt, "--output-format", "json"]
            if auto_approve:
                cmd.append("--force")
        else:
            raise ValueError(f"Unknown agent executor: {executor}")
        return cmd

    # ── Process handling ────────────────────────────────────────────────────

    def _communicate(
        self,
        handle: RunHandle,
        cmd: list[str],
        working_dir: str,
        timeout: float,
    ) -> HookResult:
        try:
            proc = subprocess.Popen(
                cmd,
                cwd=working_dir,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
                start_new_session=True,
            )
        except FileNotFoundError:
            return HookResult.failure(NOT_FOUND, f"{cmd[0]}: command not found", 127)
        except PermissionError:
            return HookResult.failure(PERMISSION_DENIED, f"{cmd[0]}: permission denied", 126)

        if not handle.attach(proc):
            return HookResult.cancelled()

        try:
            output, _ = proc.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            _kill_group(proc)
            output, _ = proc.communicate()
            logger.warning("Hook %s timed out after %ss", handle.hook.name, timeout)
            return HookResult.failure(TIMEOUT, output or "", None)

        if handle.stopped:
            return HookResult.cancelled()

        code = proc.returncode
        if code == 0:
            return HookResult.ok(output or "")
        if code == 127:
            return HookResult.failure(NOT_FOUND, output or "", code)
        if code == 126:
            return HookResult.failure(PERMISSION_DENIED, output or "", code)
        return HookResult.failure(EXIT_CODE, output or "", code)


def parse_agent_output(output: str) -> HookResult:
    """Interpret an agent CLI's JSON result."""
    try:
        data = json.loads(output)
    except json.JSONDecodeError:
        return HookResult.ok(output)
    if not isinstance(data, dict):
        return HookResult.ok(output)

    summary = str(data.get("result") or "")
    if data.get("is_error"):
        return HookResult.failure(AGENT_ERROR, summary or output, 0)
    if data.get("subtype") == WAITING_FOR_USER or data.get("status") == WAITING_FOR_USER:
        return HookResult(WAITING_FOR_USER, output=summary, exit_code=0)
    return HookResult.ok(summary)


def render_prompt(template: str, task: Task) -> str:
    """Fill {title}, {description} and {task_id} in an agent prompt."""
    return (
        template.replace("{title}", task.title)
        .replace("{description}", task.description or "")
        .replace("{task_id}", task.id)
    )
