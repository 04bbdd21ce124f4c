"""CLI entry point for hookboard."""

import json
import logging
import os
import sys

import click

from hookboard.actors.board_manager import BoardManager
from hookboard.config import get_config
from hookboard.core import boards as boards_mod
from hookboard.core import hooks as hooks_mod
from hookboard.core import tasks as tasks_mod
from hookboard.db.engine import get_db
from hookboard.system_hooks import registry


def _get_db():
    config = get_config()
    return get_db(config.db_path)


def _run_engine(task_id: str, action, timeout: float):
    """Run one task's actor in-process, apply action, and wait for its hooks to finish."""
    config = get_config()
    manager = BoardManager(config.db_path, config)
    try:
        result = action(manager)
        if not manager.wait_idle(task_id, timeout=timeout):
            click.echo(f"Hooks still running after {timeout:g}s; stopping them.", err=True)
        return result
    finally:
        manager.shutdown()


def _resolve_column(db, board_id: str, column: str):
    if column.isdigit():
        found = boards_mod.get_column(db, int(column))
        if found and found.board_id == board_id:
            return found
    return boards_mod.find_column_by_name(db, board_id, column)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Log engine activity to stderr")
def main(verbose):
    """hb - hookboard CLI"""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ── Board Commands ────────────────────────────────────────────────────────────


@main.group("board")
def board_group():
    """Manage boards and columns."""
    pass


@board_group.command("create")
@click.argument("name")
@click.option("--repo-path", default=".", help="Project root for hooks")
@click.option("--slack-channel", default=None, help="Channel for hook failure notifications")
@click.option(
    "--columns",
    default="Todo,In Progress,To Review,Done",
    help="Comma-separated column names",
)
def board_create(name, repo_path, slack_channel, columns):
    """Create a board with its columns."""
    board_id = tasks_mod.slugify(name)
    with _get_db() as db:
        board = boards_mod.create_board(
            db, board_id, name, os.path.abspath(repo_path), slack_channel
        )
        click.echo(f"Board created: {board.id} ({board.name})")
        for column_name in [c.strip() for c in columns.split(",") if c.strip()]:
            column = boards_mod.add_column(db, board.id, column_name)
            click.echo(f"  [{column.id}] {column.name}")


@board_group.command("list")
def board_list():
    """List boards."""
    with _get_db() as db:
        boards = boards_mod.list_boards(db)
        if not boards:
            click.echo("No boards found.")
            return
        for board in boards:
            click.echo(f"  {board.id}: {board.name} ({board.repo_path})")


@board_group.command("columns")
@click.argument("board_id")
def board_columns(board_id):
    """Show a board's columns and their hooks."""
    with _get_db() as db:
        if not boards_mod.get_board(db, board_id):
            click.echo(f"Board not found: {board_id}", err=True)
            sys.exit(1)
        for column in boards_mod.list_columns(db, board_id):
            disabled = "" if column.hooks_enabled else " (hooks disabled)"
            click.echo(f"  [{column.id}] {column.name}{disabled}")
            for binding in hooks_mod.list_column_hooks(db, column.id):
                hook = hooks_mod.resolve_hook(db, binding.hook_id)
                flags = [
                    flag for flag, on in (
                        ("once", binding.execute_once),
                        ("transparent", binding.transparent),
                    ) if on
                ]
                suffix = f" ({', '.join(flags)})" if flags else ""
                name = hook.name if hook else f"<missing {binding.hook_id}>"
                click.echo(f"      {binding.position}. #{binding.id} {name}{suffix}")


@board_group.command("add-column")
@click.argument("board_id")
@click.argument("name")
@click.option("--position", default=None, type=int, help="Column position")
def board_add_column(board_id, name, position):
    """Add a column to a board."""
    with _get_db() as db:
        try:
            column = boards_mod.add_column(db, board_id, name, position)
        except ValueError as e:
            click.echo(str(e), err=True)
            sys.exit(1)
        click.echo(f"Column created: [{column.id}] {column.name}")


@board_group.command("hooks-enabled")
@click.argument("column_id", type=int)
@click.argument("enabled", type=bool)
def board_hooks_enabled(column_id, enabled):
    """Turn a column's hooks on or off."""
    with _get_db() as db:
        column = boards_mod.update_column_settings(db, column_id, hooks_enabled=enabled)
        if not column:
            click.echo(f"Column not found: {column_id}", err=True)
            sys.exit(1)
        state = "enabled" if column.hooks_enabled else "disabled"
        click.echo(f"Hooks {state} for column {column.name}")


# ── Hook Commands ─────────────────────────────────────────────────────────────


@main.group("hook")
def hook_group():
    """Manage hooks and column bindings."""
    pass


@hook_group.command("add")
@click.argument("board_id")
@click.argument("name")
@click.option("--command", "-c", default=None, help="Shell command (script hooks)")
@click.option("--agent-prompt", default=None, help="Prompt (agent hooks)")
@click.option(
    "--executor",
    default="claude_code",
    type=click.Choice(hooks_mod.AGENT_EXECUTORS),
    help="Agent CLI to run",
)
@click.option("--auto-approve", is_flag=True, help="Let the agent act without approval")
@click.option(
    "--working-directory",
    default="worktree",
    type=click.Choice(hooks_mod.WORKING_DIRECTORIES),
    help="Run in the task worktree or the board's project root",
)
@click.option("--timeout", default=None, type=float, help="Timeout in seconds")
def hook_add(board_id, name, command, agent_prompt, executor, auto_approve, working_directory, timeout):
    """Create a script hook (--command) or an agent hook (--agent-prompt)."""
    kind = "agent" if agent_prompt else "script"
    with _get_db() as db:
        try:
            hook = hooks_mod.create_hook(
                db, board_id, name, kind=kind, command=command,
                working_directory=working_directory, timeout_seconds=timeout,
                agent_prompt=agent_prompt, agent_executor=executor,
                agent_auto_approve=auto_approve,
            )
        except ValueError as e:
            click.echo(str(e), err=True)
            sys.exit(1)
        click.echo(f"Created {hook.kind} hook: {hook.id}")


@hook_group.command("list")
@click.argument("board_id")
def hook_list(board_id):
    """List a board's hooks."""
    with _get_db() as db:
        hooks = hooks_mod.list_hooks(db, board_id)
        if not hooks:
            click.echo("No hooks found.")
            return
        for hook in hooks:
            detail = hook.command if hook.kind == "script" else hook.agent_executor
            click.echo(f"  {hook.id}: {hook.name} [{hook.kind}] {detail}")


@hook_group.command("system")
def hook_system():
    """List built-in system hooks."""
    for hook in registry.all():
        click.echo(f"  {hook.id}: {hook.name} - {hook.description}")


@hook_group.command("bind")
@click.argument("column_id", type=int)
@click.argument("hook_id")
@click.option("--position", default=None, type=int, help="Execution order within the column")
@click.option("--execute-once/--every-time", default=None, help="Fire at most once per task")
@click.option("--transparent/--blocking", default=None, help="Run without touching task status")
@click.option("--required", is_flag=True, help="Binding cannot be removed")
@click.option("--setting", "-s", multiple=True, help="Hook setting as key=value")
def hook_bind(column_id, hook_id, position, execute_once, transparent, required, setting):
    """Bind a hook (or system:* hook) to a column."""
    settings = {}
    for item in setting:
        key, sep, value = item.partition("=")
        if not sep:
            click.echo(f"Invalid setting (expected key=value): {item}", err=True)
            sys.exit(1)
        settings[key.strip()] = value.strip()

    with _get_db() as db:
        try:
            binding = hooks_mod.bind_hook(
                db, column_id, hook_id, position=position, execute_once=execute_once,
                transparent=transparent, removable=not required, hook_settings=settings,
            )
        except (ValueError, LookupError) as e:
            click.echo(str(e), err=True)
            sys.exit(1)
        click.echo(f"Bound {hook_id} to column {column_id} as #{binding.id}")


@hook_group.command("unbind")
@click.argument("column_hook_id", type=int)
def hook_unbind(column_hook_id):
    """Remove a column binding."""
    with _get_db() as db:
        try:
            removed = hooks_mod.unbind_hook(db, column_hook_id)
        except ValueError as e:
            click.echo(str(e), err=True)
            sys.exit(1)
        if not removed:
            click.echo(f"Binding not found: {column_hook_id}", err=True)
            sys.exit(1)
        click.echo(f"Removed binding #{column_hook_id}")


# ── Task Commands ─────────────────────────────────────────────────────────────


@main.group("task")
def task_group():
    """Manage tasks and run their hooks."""
    pass


@task_group.command("add")
@click.argument("board_id")
@click.argument("title")
@click.option("--column", default=None, help="Column name or id (default: first column)")
@click.option("--description", "-d", default="", help="Task description")
@click.option("--worktree", default=None, help="Worktree path for hooks")
@click.option("--auto-start", is_flag=True, help="Move the task to In Progress once Todo hooks finish")
@click.option("--run/--no-run", default=True, help="Run the column's hooks now")
@click.option("--timeout", default=600.0, type=float, help="Seconds to wait for hooks")
def task_add(board_id, title, column, description, worktree, auto_start, run, timeout):
    """Create a task."""
    with _get_db() as db:
        column_id = None
        if column:
            found = _resolve_column(db, board_id, column)
            if not found:
                click.echo(f"Column not found: {column}", err=True)
                sys.exit(1)
            column_id = found.id
        try:
            task = tasks_mod.create_task(
                db, board_id, title, column_id=column_id,
                description=description, worktree_path=worktree, auto_start=auto_start,
            )
        except ValueError as e:
            click.echo(str(e), err=True)
            sys.exit(1)
    click.echo(f"Created task: {task.id}")

    if run:
        _run_engine(task.id, lambda m: m.actor_for(task.id), timeout)
        _echo_task_status(task.id)


@task_group.command("list")
@click.argument("board_id")
@click.option("--json-output", "--json", is_flag=True, help="Output as JSON")
def task_list(board_id, json_output):
    """List a board's tasks by column."""
    with _get_db() as db:
        tasks = tasks_mod.list_tasks(db, board_id)
        if json_output:
            click.echo(json.dumps([_task_dict(t) for t in tasks], indent=2))
            return
        if not tasks:
            click.echo("No tasks found.")
            return

        status_icons = {"idle": "○", "executing": "●", "error": "✗"}
        columns = {c.id: c.name for c in boards_mod.list_columns(db, board_id)}
        for task in tasks:
            icon = status_icons.get(task.agent_status, "?")
            column = columns.get(task.column_id, task.column_id)
            click.echo(f"  {icon} {task.id}: {task.title} [{column}]")


@task_group.command("show")
@click.argument("task_id")
def task_show(task_id):
    """Show task details and hook history."""
    with _get_db() as db:
        task = tasks_mod.get_task(db, task_id)
        if not task:
            click.echo(f"Task not found: {task_id}", err=True)
            sys.exit(1)
        column = boards_mod.get_column(db, task.column_id)

        click.echo(f"Task: {task.id}")
        click.echo(f"  Title: {task.title}")
        click.echo(f"  Board: {task.board_id}")
        click.echo(f"  Column: {column.name if column else task.column_id}")
        click.echo(f"  Agent status: {task.agent_status}")
        if task.agent_status_message:
            click.echo(f"  Message: {task.agent_status_message}")
        if task.error_message:
            click.echo(f"  Error: {task.error_message}")
        if task.description:
            click.echo(f"  Description: {task.description}")
        if task.branch_name:
            click.echo(f"  Branch: {task.branch_name}")
        if task.worktree_path:
            click.echo(f"  Worktree: {task.worktree_path}")


@task_group.command("move")
@click.argument("task_id")
@click.argument("column")
@click.option("--timeout", default=600.0, type=float, help="Seconds to wait for hooks")
def task_move(task_id, column, timeout):
    """Move a task to a column (name or id) and run its hooks."""
    with _get_db() as db:
        task = tasks_mod.get_task(db, task_id)
        if not task:
            click.echo(f"Task not found: {task_id}", err=True)
            sys.exit(1)
        found = _resolve_column(db, task.board_id, column)
        if not found:
            click.echo(f"Column not found: {column}", err=True)
            sys.exit(1)

    _run_engine(task_id, lambda m: m.move(task_id, found.id), timeout)
    click.echo(f"Moved {task_id} to {found.name}")
    _echo_task_status(task_id)


@task_group.command("stop")
@click.argument("task_id")
def task_stop(task_id):
    """Cancel a task's queued hooks and reset it to idle."""
    task = _run_engine(task_id, lambda m: m.stop_execution(task_id), 30.0)
    if not task:
        click.echo(f"Task not found: {task_id}", err=True)
        sys.exit(1)
    click.echo(f"Stopped hooks for {task_id}")


@task_group.command("clear-error")
@click.argument("task_id")
def task_clear_error(task_id):
    """Clear a task's hook error."""
    task = _run_engine(task_id, lambda m: m.clear_error(task_id), 30.0)
    if not task:
        click.echo(f"Task not found: {task_id}", err=True)
        sys.exit(1)
    click.echo(f"Cleared error for {task_id}")


@task_group.command("delete")
@click.argument("task_id")
def task_delete(task_id):
    """Cancel a task's hooks and delete it."""
    config = get_config()
    manager = BoardManager(config.db_path, config)
    try:
        deleted = manager.delete_task(task_id)
    finally:
        manager.shutdown()
    if not deleted:
        click.echo(f"Task not found: {task_id}", err=True)
        sys.exit(1)
    click.echo(f"Deleted task: {task_id}")


@task_group.command("history")
@click.argument("task_id")
@click.option("--json-output", "--json", is_flag=True, help="Output as JSON")
def task_history(task_id, json_output):
    """Show every hook attempt for a task, oldest first."""
    config = get_config()
    history = BoardManager(config.db_path, config).execution_history(task_id)
    if json_output:
        click.echo(json.dumps([_execution_dict(e) for e in history], indent=2))
        return
    if not history:
        click.echo("No hook executions.")
        return
    for e in history:
        reason = f" ({e.skip_reason})" if e.skip_reason else ""
        if e.result == "waiting_for_user":
            reason += " [waiting_for_user]"
        click.echo(f"  [{e.queued_at}] {e.hook_name}: {e.status}{reason}")
        if e.error_message:
            click.echo(f"      {e.error_message}")


def _echo_task_status(task_id: str):
    with _get_db() as db:
        task = tasks_mod.get_task(db, task_id)
    if not task:
        return
    click.echo(f"  Agent status: {task.agent_status}")
    if task.error_message:
        click.echo(f"  Error: {task.error_message}")


# ── Server Commands ───────────────────────────────────────────────────────────


@main.command("serve")
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option("--port", default=8787, type=int, help="Port to listen on")
def serve_command(host, port):
    """Run the hook engine with its JSON API."""
    from hookboard.web.app import run_server

    click.echo(f"Serving on http://{host}:{port}")
    run_server(host=host, port=port)


@main.group("mcp")
def mcp_group():
    """MCP server commands."""
    pass


@mcp_group.command("serve")
def mcp_serve():
    """Start the MCP server (stdio transport)."""
    from hookboard.mcp.server import mcp

    mcp.run(transport="stdio")


# ── Helpers ───────────────────────────────────────────────────────────────────


def _task_dict(task) -> dict:
    return {
        "id": task.id,
        "title": task.title,
        "board": task.board_id,
        "column_id": task.column_id,
        "agent_status": task.agent_status,
        "agent_status_message": task.agent_status_message,
        "error_message": task.error_message,
        "in_progress": task.in_progress,
        "executed_hooks": task.executed_hooks,
        "branch": task.branch_name,
        "worktree": task.worktree_path,
        "auto_start": task.auto_start,
    }


def _execution_dict(e) -> dict:
    return {
        "id": e.id,
        "hook_id": e.hook_id,
        "hook_name": e.hook_name,
        "status": e.status,
        "skip_reason": e.skip_reason,
        "error_message": e.error_message,
        "result": e.result,
        "triggering_column_id": e.triggering_column_id,
        "queued_at": e.queued_at.isoformat() if e.queued_at else None,
        "started_at": e.started_at.isoformat() if e.started_at else None,
        "completed_at": e.completed_at.isoformat() if e.completed_at else None,
    }


if __name__ == "__main__":
    main()
