"""MCP server exposing the board and hook engine as tools."""

from __future__ import annotations

import sqlite3
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from mcp.server.fastmcp import Context, FastMCP

from hookboard.actors.board_manager import BoardManager
from hookboard.config import Config, get_config
from hookboard.core import boards as boards_mod
from hookboard.core import tasks as tasks_mod
from hookboard.db.engine import init_db
from hookboard.integrations.slack import SlackNotifier
from hookboard.system_hooks import registry


@dataclass
class AppContext:
    db: sqlite3.Connection
    config: Config
    manager: BoardManager


@asynccontextmanager
async def app_lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
    """Start the hook engine on startup, stop it on shutdown."""
    config = get_config()
    db = init_db(config.db_path)
    manager = BoardManager(config.db_path, config)
    if config.slack_bot_token:
        manager.subscribe(SlackNotifier(config.db_path, config.slack_bot_token))
    manager.start()

    try:
        yield AppContext(db=db, config=config, manager=manager)
    finally:
        manager.shutdown()
        db.close()


mcp = FastMCP("hookboard", lifespan=app_lifespan)


def _ctx(ctx: Context) -> AppContext:
    """Extract AppContext from MCP Context."""
    return ctx.request_context.lifespan_context


def _resolve_column(db: sqlite3.Connection, board_id: str, column: str):
    if column.isdigit():
        found = boards_mod.get_column(db, int(column))
        if found and found.board_id == board_id:
            return found
    return boards_mod.find_column_by_name(db, board_id, column)


# ── Board Tools ───────────────────────────────────────────────────────────────


@mcp.tool()
def list_boards(ctx: Context) -> list[dict]:
    """List all boards with their columns."""
    app = _ctx(ctx)
    result = []
    for board in boards_mod.list_boards(app.db):
        columns = boards_mod.list_columns(app.db, board.id)
        result.append({
            "id": board.id,
            "name": board.name,
            "repo_path": board.repo_path,
            "columns": [{"id": c.id, "name": c.name} for c in columns],
        })
    return result


# ── Task Tools ────────────────────────────────────────────────────────────────


@mcp.tool()
def create_task(
    ctx: Context,
    board: str,
    title: str,
    description: str = "",
    column: str | None = None,
    worktree_path: str | None = None,
    auto_start: bool = False,
) -> dict:
    """Create a task. It starts in the board's first column unless a column is given,
    and that column's hooks run right away. With auto_start, a Todo task moves on
    to In Progress once its Todo hooks finish."""
    app = _ctx(ctx)
    column_id = None
    if column:
        found = _resolve_column(app.db, board, column)
        if not found:
            return {"error": f"Column not found: {column}"}
        column_id = found.id
    try:
        task = tasks_mod.create_task(
            app.db, board, title, column_id=column_id, description=description,
            worktree_path=worktree_path, auto_start=auto_start, pubsub=app.manager.pubsub,
        )
    except ValueError as e:
        return {"error": str(e)}
    return _task_to_dict(task)


@mcp.tool()
def list_tasks(ctx: Context, board: str, column: str | None = None) -> list[dict]:
    """List a board's tasks, optionally only those in one column."""
    app = _ctx(ctx)
    column_id = None
    if column:
        found = _resolve_column(app.db, board, column)
        if not found:
            return []
        column_id = found.id
    return [_task_to_dict(t) for t in tasks_mod.list_tasks(app.db, board, column_id)]


@mcp.tool()
def get_task(ctx: Context, task_id: str) -> dict:
    """Get a task with its hook status."""
    app = _ctx(ctx)
    task = tasks_mod.get_task(app.db, task_id)
    if not task:
        return {"error": f"Task not found: {task_id}"}
    return _task_to_dict(task)


@mcp.tool()
def move_task(ctx: Context, task_id: str, column: str) -> dict:
    """Move a task to another column (by name or id). Cancels hooks still running
    for the old column and queues the new column's hooks."""
    app = _ctx(ctx)
    task = tasks_mod.get_task(app.db, task_id)
    if not task:
        return {"error": f"Task not found: {task_id}"}
    found = _resolve_column(app.db, task.board_id, column)
    if not found:
        return {"error": f"Column not found: {column}"}
    moved = app.manager.move(task_id, found.id)
    if not moved:
        return {"error": f"Task not found: {task_id}"}
    return _task_to_dict(moved)


@mcp.tool()
def stop_execution(ctx: Context, task_id: str) -> dict:
    """Cancel the task's running and queued hooks and reset it to idle."""
    app = _ctx(ctx)
    task = app.manager.stop_execution(task_id)
    if not task:
        return {"error": f"Task not found: {task_id}"}
    return _task_to_dict(task)


@mcp.tool()
def clear_error(ctx: Context, task_id: str) -> dict:
    """Clear a task's hook error so blocking hooks run again on the next move."""
    app = _ctx(ctx)
    task = app.manager.clear_error(task_id)
    if not task:
        return {"error": f"Task not found: {task_id}"}
    return _task_to_dict(task)


@mcp.tool()
def delete_task(ctx: Context, task_id: str) -> dict:
    """Cancel a task's hooks and delete it."""
    app = _ctx(ctx)
    if not app.manager.delete_task(task_id):
        return {"error": f"Task not found: {task_id}"}
    return {"deleted": task_id}


# ── Hook Tools ────────────────────────────────────────────────────────────────


@mcp.tool()
def get_execution_history(ctx: Context, task_id: str) -> list[dict]:
    """Every hook attempt for a task, oldest first, including cancelled and skipped ones."""
    app = _ctx(ctx)
    return [
        {
            "id": e.id,
            "hook": e.hook_name,
            "hook_id": e.hook_id,
            "status": e.status,
            "skip_reason": e.skip_reason,
            "error": e.error_message,
            "result": e.result,
            "column_id": e.triggering_column_id,
            "queued_at": e.queued_at.isoformat() if e.queued_at else None,
            "completed_at": e.completed_at.isoformat() if e.completed_at else None,
        }
        for e in app.manager.execution_history(task_id)
    ]


@mcp.tool()
def list_system_hooks(ctx: Context) -> list[dict]:
    """List the built-in hooks that can be bound to columns."""
    return [h.to_dict() for h in registry.all()]


def _task_to_dict(task) -> dict:
    return {
        "id": task.id,
        "title": task.title,
        "board": task.board_id,
        "column_id": task.column_id,
        "description": task.description,
        "agent_status": task.agent_status,
        "agent_status_message": task.agent_status_message,
        "error_message": task.error_message,
        "in_progress": task.in_progress,
        "branch": task.branch_name,
        "worktree": task.worktree_path,
        "auto_start": task.auto_start,
    }
