"""Hook definitions and their column bindings."""

import json
import sqlite3
from datetime import datetime

from hookboard.core.tasks import slugify
from hookboard.db.models import ColumnHook, Hook
from hookboard.system_hooks import registry

HOOK_KINDS = ("script", "agent")
WORKING_DIRECTORIES = ("worktree", "project_root")
AGENT_EXECUTORS = ("claude_code", "gemini_cli", "codex", "opencode", "cursor_agent")


# ── Hooks ───────────────────────────────────────────────────────────────────


def create_hook(
    db: sqlite3.Connection,
    board_id: str,
    name: str,
    kind: str = "script",
    command: str | None = None,
    working_directory: str = "worktree",
    timeout_seconds: float | None = None,
    agent_prompt: str | None = None,
    agent_executor: str = "claude_code",
    agent_auto_approve: bool = False,
) -> Hook:
    """Create a user hook on a board."""
    if kind not in HOOK_KINDS:
        raise ValueError(f"Invalid hook kind: {kind}")
    if working_directory not in WORKING_DIRECTORIES:
        raise ValueError(f"Invalid working directory: {working_directory}")
    if agent_executor not in AGENT_EXECUTORS:
        raise ValueError(f"Unknown agent executor: {agent_executor}")
    if kind == "script" and not command:
        raise ValueError("Script hooks need a command")
    if kind == "agent" and not agent_prompt:
        raise ValueError("Agent hooks need a prompt")

    hook_id = _unique_hook_id(db, slugify(name) or "hook")
    db.execute(
        """INSERT INTO hooks (id, board_id, name, kind, command, working_directory,
                              timeout_seconds, agent_prompt, agent_executor, agent_auto_approve)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            hook_id, board_id, name, kind, command, working_directory,
            timeout_seconds, agent_prompt, agent_executor, int(agent_auto_approve),
        ),
    )
    db.commit()
    return get_hook(db, hook_id)


def get_hook(db: sqlite3.Connection, hook_id: str) -> Hook | None:
    """Get a user hook by ID."""
    row = db.execute("SELECT * FROM hooks WHERE id = ?", (hook_id,)).fetchone()
    if not row:
        return None
    return _row_to_hook(row)


def list_hooks(db: sqlite3.Connection, board_id: str) -> list[Hook]:
    rows = db.execute(
        "SELECT * FROM hooks WHERE board_id = ? ORDER BY created_at, id", (board_id,)
    ).fetchall()
    return [_row_to_hook(r) for r in rows]


def update_hook(db: sqlite3.Connection, hook_id: str, **kwargs) -> Hook | None:
    """Update user hook fields. System hooks are read-only."""
    if registry.is_system_hook(hook_id):
        raise ValueError(f"System hooks cannot be edited: {hook_id}")
    allowed = {
        "name", "command", "working_directory", "timeout_seconds",
        "agent_prompt", "agent_executor", "agent_auto_approve",
    }
    updates = {k: v for k, v in kwargs.items() if k in allowed and v is not None}
    if "agent_auto_approve" in updates:
        updates["agent_auto_approve"] = int(updates["agent_auto_approve"])
    if not updates:
        return get_hook(db, hook_id)

    set_clause = ", ".join(f"{k} = ?" for k in updates)
    values = list(updates.values()) + [hook_id]
    db.execute(
        f"UPDATE hooks SET {set_clause}, updated_at = datetime('now') WHERE id = ?",
        values,
    )
    db.commit()
    return get_hook(db, hook_id)


def delete_hook(db: sqlite3.Connection, hook_id: str) -> bool:
    """Delete a user hook and its column bindings.

    Execution history keeps its name snapshot.
    """
    if registry.is_system_hook(hook_id):
        raise ValueError(f"System hooks cannot be deleted: {hook_id}")
    if not get_hook(db, hook_id):
        return False
    db.execute("DELETE FROM column_hooks WHERE hook_id = ?", (hook_id,))
    db.execute("DELETE FROM hooks WHERE id = ?", (hook_id,))
    db.commit()
    return True


def resolve_hook(db: sqlite3.Connection, hook_id: str) -> Hook | None:
    """Resolve a binding's hook id to a Hook, looking in the registry for system ids."""
    if registry.is_system_hook(hook_id):
        try:
            return registry.get(hook_id).as_hook()
        except registry.SystemHookNotFound:
            return None
    return get_hook(db, hook_id)


# ── Column bindings ─────────────────────────────────────────────────────────


def bind_hook(
    db: sqlite3.Connection,
    column_id: int,
    hook_id: str,
    position: int | None = None,
    execute_once: bool | None = None,
    transparent: bool | None = None,
    removable: bool = True,
    hook_settings: dict | None = None,
) -> ColumnHook:
    """Bind a hook to a column.

    Flags left as None fall back to the system hook's defaults, or False.
    """
    if registry.is_system_hook(hook_id):
        system_hook = registry.get(hook_id)
        if execute_once is None:
            execute_once = system_hook.default_execute_once
        if transparent is None:
            transparent = system_hook.default_transparent
    elif not get_hook(db, hook_id):
        raise ValueError(f"Hook not found: {hook_id}")

    if position is None:
        row = db.execute(
            "SELECT MAX(position) AS pos FROM column_hooks WHERE column_id = ?",
            (column_id,),
        ).fetchone()
        position = 0 if row["pos"] is None else row["pos"] + 1

    cur = db.execute(
        """INSERT INTO column_hooks
           (column_id, hook_id, position, execute_once, transparent, removable, hook_settings)
           VALUES (?, ?, ?, ?, ?, ?, ?)""",
        (
            column_id, hook_id, position, int(bool(execute_once)),
            int(bool(transparent)), int(removable), json.dumps(hook_settings or {}),
        ),
    )
    db.commit()
    return get_column_hook(db, cur.lastrowid)


def get_column_hook(db: sqlite3.Connection, column_hook_id: int) -> ColumnHook | None:
    row = db.execute(
        "SELECT * FROM column_hooks WHERE id = ?", (column_hook_id,)
    ).fetchone()
    if not row:
        return None
    return _row_to_column_hook(row)


def list_column_hooks(db: sqlite3.Connection, column_id: int) -> list[ColumnHook]:
    """A column's bindings in execution order; equal positions keep insertion order."""
    rows = db.execute(
        "SELECT * FROM column_hooks WHERE column_id = ? ORDER BY position, id",
        (column_id,),
    ).fetchall()
    return [_row_to_column_hook(r) for r in rows]


def update_column_hook(
    db: sqlite3.Connection, column_hook_id: int, **kwargs
) -> ColumnHook | None:
    """Update a binding's order, flags or settings."""
    allowed = {"position", "execute_once", "transparent", "hook_settings"}
    updates = {k: v for k, v in kwargs.items() if k in allowed and v is not None}
    if "hook_settings" in updates:
        updates["hook_settings"] = json.dumps(updates["hook_settings"])
    for flag in ("execute_once", "transparent"):
        if flag in updates:
            updates[flag] = int(bool(updates[flag]))
    if not updates:
        return get_column_hook(db, column_hook_id)

    set_clause = ", ".join(f"{k} = ?" for k in updates)
    values = list(updates.values()) + [column_hook_id]
    db.execute(f"UPDATE column_hooks SET {set_clause} WHERE id = ?", values)
    db.commit()
    return get_column_hook(db, column_hook_id)


def unbind_hook(db: sqlite3.Connection, column_hook_id: int) -> bool:
    """Remove a binding. Required bindings cannot be removed."""
    binding = get_column_hook(db, column_hook_id)
    if not binding:
        return False
    if not binding.removable:
        raise ValueError(f"Column hook {column_hook_id} is required and cannot be removed")
    db.execute("DELETE FROM column_hooks WHERE id = ?", (column_hook_id,))
    db.commit()
    return True


# ── Row-to-model helpers ────────────────────────────────────────────────────


def _unique_hook_id(db: sqlite3.Connection, base: str) -> str:
    candidate = base
    i = 2
    while db.execute("SELECT 1 FROM hooks WHERE id = ?", (candidate,)).fetchone():
        candidate = f"{base}-{i}"
        i += 1
    return candidate


def _row_to_hook(row: sqlite3.Row) -> Hook:
    return Hook(
        id=row["id"],
        board_id=row["board_id"],
        name=row["name"],
        kind=row["kind"],
        command=row["command"],
        working_directory=row["working_directory"],
        timeout_seconds=row["timeout_seconds"],
        agent_prompt=row["agent_prompt"],
        agent_executor=row["agent_executor"] or "claude_code",
        agent_auto_approve=bool(row["agent_auto_approve"]),
        created_at=_parse_dt(row["created_at"]),
        updated_at=_parse_dt(row["updated_at"]),
    )


def _row_to_column_hook(row: sqlite3.Row) -> ColumnHook:
    return ColumnHook(
        id=row["id"],
        column_id=row["column_id"],
        hook_id=row["hook_id"],
        position=row["position"],
        execute_once=bool(row["execute_once"]),
        transparent=bool(row["transparent"]),
        removable=bool(row["removable"]),
        hook_settings=json.loads(row["hook_settings"] or "{}"),
        created_at=_parse_dt(row["created_at"]),
    )


def _parse_dt(val: str | None) -> datetime | None:
    if val is None:
        return None
    return datetime.fromisoformat(val)
