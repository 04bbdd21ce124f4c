"""Execution ledger: one row per hook attempt.

Rows move forward only: pending -> running -> completed | failed, and any
active row may be cancelled. Every transition is a guarded UPDATE so a late
writer (for example a hook that finishes after it was cancelled) cannot
regress a terminal row; the guarded functions return False in that case.
"""

import json
import logging
import sqlite3
from datetime import datetime

from hookboard.db.models import (
    PENDING,
    RUNNING,
    SKIPPED,
    ColumnHook,
    Hook,
    HookExecution,
)

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now().isoformat()


# ── Row creation ────────────────────────────────────────────────────────────


def queue_execution(
    db: sqlite3.Connection,
    task_id: str,
    binding: ColumnHook,
    hook: Hook,
    triggering_column_id: int | None,
) -> HookExecution:
    """Create a pending row for a binding about to be queued."""
    return _insert(db, task_id, binding, hook, triggering_column_id, PENDING, None)


def record_skipped(
    db: sqlite3.Connection,
    task_id: str,
    binding: ColumnHook,
    hook: Hook,
    triggering_column_id: int | None,
    reason: str,
) -> HookExecution:
    """Create a row directly in the skipped state."""
    return _insert(db, task_id, binding, hook, triggering_column_id, SKIPPED, reason)


def _insert(
    db: sqlite3.Connection,
    task_id: str,
    binding: ColumnHook,
    hook: Hook,
    triggering_column_id: int | None,
    status: str,
    skip_reason: str | None,
) -> HookExecution:
    now = _now()
    completed_at = now if status == SKIPPED else None
    cur = db.execute(
        """INSERT INTO hook_executions
           (task_id, column_hook_id, hook_id, hook_name, hook_settings,
            triggering_column_id, status, skip_reason, queued_at, completed_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            task_id, binding.id, hook.id, hook.name, json.dumps(binding.hook_settings),
            triggering_column_id, status, skip_reason, now, completed_at,
        ),
    )
    db.commit()
    return get_execution(db, cur.lastrowid)


# ── Transitions ─────────────────────────────────────────────────────────────


def start_execution(db: sqlite3.Connection, execution_id: int) -> bool:
    """pending -> running."""
    return _transition(
        db, execution_id, (PENDING,),
        "status = 'running', started_at = ?", (_now(),),
    )


def complete_execution(
    db: sqlite3.Connection, execution_id: int, result: str | None = None
) -> bool:
    """running -> completed, recording the hook's result status."""
    return _transition(
        db, execution_id, (RUNNING,),
        "status = 'completed', result = ?, completed_at = ?", (result, _now()),
    )


def fail_execution(
    db: sqlite3.Connection, execution_id: int, error_message: str | None
) -> bool:
    """running -> failed, keeping the error detail."""
    return _transition(
        db, execution_id, (RUNNING,),
        "status = 'failed', error_message = ?, completed_at = ?",
        (error_message, _now()),
    )


def cancel_execution(db: sqlite3.Connection, execution_id: int, reason: str) -> bool:
    """pending | running -> cancelled."""
    return _transition(
        db, execution_id, (PENDING, RUNNING),
        "status = 'cancelled', skip_reason = ?, completed_at = ?",
        (reason, _now()),
    )


def cancel_active(db: sqlite3.Connection, task_id: str, reason: str) -> int:
    """Cancel every pending or running row of a task. Returns the row count."""
    cur = db.execute(
        """UPDATE hook_executions
           SET status = 'cancelled', skip_reason = ?, completed_at = ?
           WHERE task_id = ? AND status IN ('pending', 'running')""",
        (reason, _now(), task_id),
    )
    db.commit()
    if cur.rowcount:
        logger.info("Cancelled %d active hook(s) for task %s (%s)", cur.rowcount, task_id, reason)
    return cur.rowcount


def cancel_pending(db: sqlite3.Connection, task_id: str, reason: str) -> int:
    """Cancel only the not-yet-started rows of a task."""
    cur = db.execute(
        """UPDATE hook_executions
           SET status = 'cancelled', skip_reason = ?, completed_at = ?
           WHERE task_id = ? AND status = 'pending'""",
        (reason, _now(), task_id),
    )
    db.commit()
    return cur.rowcount


def _transition(
    db: sqlite3.Connection,
    execution_id: int,
    allowed_from: tuple[str, ...],
    set_clause: str,
    values: tuple,
) -> bool:
    placeholders = ", ".join("?" for _ in allowed_from)
    cur = db.execute(
        f"UPDATE hook_executions SET {set_clause} WHERE id = ? AND status IN ({placeholders})",
        (*values, execution_id, *allowed_from),
    )
    db.commit()
    if cur.rowcount == 0:
        logger.debug(
            "Ignored transition of execution %s (%s) from a state outside %s",
            execution_id, set_clause.split(",")[0], allowed_from,
        )
        return False
    return True


# ── Queries ─────────────────────────────────────────────────────────────────


def get_execution(db: sqlite3.Connection, execution_id: int) -> HookExecution | None:
    row = db.execute(
        "SELECT * FROM hook_executions WHERE id = ?", (execution_id,)
    ).fetchone()
    if not row:
        return None
    return _row_to_execution(row)


def pending_for_task(db: sqlite3.Connection, task_id: str) -> list[HookExecution]:
    return _query(db, "task_id = ? AND status = 'pending'", (task_id,))


def active_for_task(db: sqlite3.Connection, task_id: str) -> list[HookExecution]:
    """Rows still pending or running, oldest first."""
    return _query(db, "task_id = ? AND status IN ('pending', 'running')", (task_id,))


def history_for_task(db: sqlite3.Connection, task_id: str) -> list[HookExecution]:
    """Every attempt for a task, newest last."""
    return _query(db, "task_id = ?", (task_id,))


def for_task_and_column(
    db: sqlite3.Connection, task_id: str, column_id: int
) -> list[HookExecution]:
    return _query(db, "task_id = ? AND triggering_column_id = ?", (task_id, column_id))


def _query(db: sqlite3.Connection, where: str, params: tuple) -> list[HookExecution]:
    rows = db.execute(
        f"SELECT * FROM hook_executions WHERE {where} ORDER BY queued_at ASC, id ASC",
        params,
    ).fetchall()
    return [_row_to_execution(r) for r in rows]


def _row_to_execution(row: sqlite3.Row) -> HookExecution:
    return HookExecution(
        id=row["id"],
        task_id=row["task_id"],
        column_hook_id=row["column_hook_id"],
        hook_id=row["hook_id"],
        hook_name=row["hook_name"],
        hook_settings=json.loads(row["hook_settings"] or "{}"),
        triggering_column_id=row["triggering_column_id"],
        status=row["status"],
        skip_reason=row["skip_reason"],
        error_message=row["error_message"],
        result=row["result"],
        queued_at=_parse_dt(row["queued_at"]),
        started_at=_parse_dt(row["started_at"]),
        completed_at=_parse_dt(row["completed_at"]),
    )


def _parse_dt(val: str | None) -> datetime | None:
    if val is None:
        return None
    return datetime.fromisoformat(val)
