"""Task management operations.

These are the only functions that write task rows. Every write is published on
the board's change feed when a PubSub is passed in, which is how board
watchers learn about new, moved and deleted tasks.
"""

import json
import re
import sqlite3
from datetime import datetime

from hookboard.db.models import ERROR, EXECUTING, IDLE, Task
from hookboard.events import DELETE, INSERT, UPDATE, PubSub, TaskChange, board_topic


def slugify(title: str) -> str:
    """Convert a title to a URL-friendly slug."""
    slug = title.lower().strip()
    slug = re.sub(r"[^\w\s-]", "", slug)
    slug = re.sub(r"[\s_]+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")[:60]


def _unique_id(db: sqlite3.Connection, base_slug: str) -> str:
    """Generate a unique task ID from a slug, appending a number if needed."""
    existing = db.execute(
        "SELECT id FROM tasks WHERE id = ?", (base_slug,)
    ).fetchone()
    if not existing:
        return base_slug

    i = 2
    while True:
        candidate = f"{base_slug}-{i}"
        existing = db.execute(
            "SELECT id FROM tasks WHERE id = ?", (candidate,)
        ).fetchone()
        if not existing:
            return candidate
        i += 1


def create_task(
    db: sqlite3.Connection,
    board_id: str,
    title: str,
    column_id: int | None = None,
    description: str = "",
    worktree_path: str | None = None,
    auto_start: bool = False,
    pubsub: PubSub | None = None,
) -> Task:
    """Create a new task, placed in the board's first column unless given one."""
    if column_id is None:
        row = db.execute(
            "SELECT id FROM columns WHERE board_id = ? ORDER BY position, id LIMIT 1",
            (board_id,),
        ).fetchone()
        if not row:
            raise ValueError(f"Board has no columns: {board_id}")
        column_id = row["id"]
    else:
        row = db.execute(
            "SELECT board_id FROM columns WHERE id = ?", (column_id,)
        ).fetchone()
        if not row or row["board_id"] != board_id:
            raise ValueError(f"Column {column_id} not found on board {board_id}")

    task_id = _unique_id(db, slugify(title) or "task")
    db.execute(
        """INSERT INTO tasks
           (id, board_id, column_id, title, description, worktree_path, auto_start)
           VALUES (?, ?, ?, ?, ?, ?, ?)""",
        (task_id, board_id, column_id, title, description, worktree_path, int(auto_start)),
    )
    db.commit()
    task = get_task(db, task_id)
    if pubsub:
        pubsub.publish(board_topic(board_id), TaskChange(INSERT, task))
    return task


def get_task(db: sqlite3.Connection, task_id: str) -> Task | None:
    """Get a task by ID."""
    row = db.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
    if not row:
        return None
    return _row_to_task(row)


def list_tasks(
    db: sqlite3.Connection,
    board_id: str,
    column_id: int | None = None,
) -> list[Task]:
    """List a board's tasks, optionally only those in one column."""
    query = "SELECT * FROM tasks WHERE board_id = ?"
    params: list = [board_id]
    if column_id is not None:
        query += " AND column_id = ?"
        params.append(column_id)
    query += " ORDER BY created_at ASC, id ASC"
    rows = db.execute(query, params).fetchall()
    return [_row_to_task(r) for r in rows]


def update_task_column(
    db: sqlite3.Connection,
    task_id: str,
    column_id: int,
    pubsub: PubSub | None = None,
) -> Task | None:
    """Persist a task's column. Returns the updated task."""
    return _update_task(db, task_id, {"column_id": column_id}, pubsub)


def set_agent_status(
    db: sqlite3.Connection,
    task_id: str,
    agent_status: str,
    message: str | None = None,
    pubsub: PubSub | None = None,
) -> Task | None:
    """Set agent_status and its message; in_progress follows the executing state."""
    if agent_status not in (IDLE, EXECUTING, ERROR):
        raise ValueError(f"Invalid agent status: {agent_status}")
    changes = {
        "agent_status": agent_status,
        "agent_status_message": message,
        "in_progress": int(agent_status == EXECUTING),
    }
    return _update_task(db, task_id, changes, pubsub)


def set_error(
    db: sqlite3.Connection,
    task_id: str,
    error_message: str,
    pubsub: PubSub | None = None,
) -> Task | None:
    """Put a task into the error state with a message."""
    changes = {
        "agent_status": ERROR,
        "agent_status_message": error_message,
        "error_message": error_message,
        "in_progress": 0,
    }
    return _update_task(db, task_id, changes, pubsub)


def clear_error(
    db: sqlite3.Connection,
    task_id: str,
    pubsub: PubSub | None = None,
) -> Task | None:
    """Reset a task to idle and drop its error. executed_hooks is left alone."""
    changes = {
        "agent_status": IDLE,
        "agent_status_message": None,
        "error_message": None,
        "in_progress": 0,
    }
    return _update_task(db, task_id, changes, pubsub)


def add_executed_hook(
    db: sqlite3.Connection,
    task_id: str,
    column_hook_id: int,
    pubsub: PubSub | None = None,
) -> Task | None:
    """Record that an execute-once binding has fired for this task."""
    task = get_task(db, task_id)
    if not task:
        return None
    if column_hook_id in task.executed_hooks:
        return task
    executed = task.executed_hooks + [column_hook_id]
    return _update_task(db, task_id, {"executed_hooks": json.dumps(executed)}, pubsub)


def set_branch_name(
    db: sqlite3.Connection,
    task_id: str,
    branch_name: str | None,
    pubsub: PubSub | None = None,
) -> Task | None:
    return _update_task(db, task_id, {"branch_name": branch_name}, pubsub)


def set_worktree_path(
    db: sqlite3.Connection,
    task_id: str,
    worktree_path: str | None,
    pubsub: PubSub | None = None,
) -> Task | None:
    return _update_task(db, task_id, {"worktree_path": worktree_path}, pubsub)


def delete_task(
    db: sqlite3.Connection,
    task_id: str,
    pubsub: PubSub | None = None,
) -> bool:
    """Delete a task. Its execution history goes with it."""
    task = get_task(db, task_id)
    if not task:
        return False
    db.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
    db.commit()
    if pubsub:
        pubsub.publish(board_topic(task.board_id), TaskChange(DELETE, task))
    return True


def _update_task(
    db: sqlite3.Connection,
    task_id: str,
    changes: dict,
    pubsub: PubSub | None,
) -> Task | None:
    set_parts = [f"{k} = ?" for k in changes]
    set_parts.append("updated_at = datetime('now')")
    values = list(changes.values()) + [task_id]
    cur = db.execute(
        f"UPDATE tasks SET {', '.join(set_parts)} WHERE id = ?",
        values,
    )
    db.commit()
    if cur.rowcount == 0:
        return None
    task = get_task(db, task_id)
    if pubsub and task:
        pubsub.publish(
            board_topic(task.board_id), TaskChange(UPDATE, task, tuple(changes))
        )
    return task


def _row_to_task(row: sqlite3.Row) -> Task:
    return Task(
        id=row["id"],
        board_id=row["board_id"],
        column_id=row["column_id"],
        title=row["title"],
        description=row["description"] or "",
        agent_status=row["agent_status"],
        agent_status_message=row["agent_status_message"],
        error_message=row["error_message"],
        in_progress=bool(row["in_progress"]),
        executed_hooks=json.loads(row["executed_hooks"] or "[]"),
        worktree_path=row["worktree_path"],
        branch_name=row["branch_name"],
        auto_start=bool(row["auto_start"]),
        created_at=_parse_dt(row["created_at"]),
        updated_at=_parse_dt(row["updated_at"]),
    )


def _parse_dt(val: str | None) -> datetime | None:
    if val is None:
        return None
    return datetime.fromisoformat(val)
