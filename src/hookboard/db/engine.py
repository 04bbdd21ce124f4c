"""SQLite database connection management and schema initialization."""

import sqlite3
from contextlib import contextmanager
from pathlib import Path

SCHEMA = """
CREATE TABLE IF NOT EXISTS boards (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    repo_path TEXT NOT NULL,
    slack_channel TEXT,
    created_at TEXT DEFAULT (datetime('now')),
    updated_at TEXT DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS columns (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    board_id TEXT NOT NULL REFERENCES boards(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    position INTEGER NOT NULL DEFAULT 0,
    settings TEXT NOT NULL DEFAULT '{}',
    created_at TEXT DEFAULT (datetime('now')),
    UNIQUE(board_id, name)
);

CREATE TABLE IF NOT EXISTS hooks (
    id TEXT PRIMARY KEY,
    board_id TEXT NOT NULL REFERENCES boards(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    kind TEXT NOT NULL DEFAULT 'script' CHECK (kind IN ('script', 'agent')),
    command TEXT,
    working_directory TEXT NOT NULL DEFAULT 'worktree'
        CHECK (working_directory IN ('worktree', 'project_root')),
    timeout_seconds REAL,
    agent_prompt TEXT,
    agent_executor TEXT DEFAULT 'claude_code',
    agent_auto_approve INTEGER NOT NULL DEFAULT 0,
    created_at TEXT DEFAULT (datetime('now')),
    updated_at TEXT DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS column_hooks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    column_id INTEGER NOT NULL REFERENCES columns(id) ON DELETE CASCADE,
    hook_id TEXT NOT NULL,
    position INTEGER NOT NULL DEFAULT 0,
    execute_once INTEGER NOT NULL DEFAULT 0,
    transparent INTEGER NOT NULL DEFAULT 0,
    removable INTEGER NOT NULL DEFAULT 1,
    hook_settings TEXT NOT NULL DEFAULT '{}',
    created_at TEXT DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS tasks (
    id TEXT PRIMARY KEY,
    board_id TEXT NOT NULL REFERENCES boards(id) ON DELETE CASCADE,
    column_id INTEGER NOT NULL REFERENCES columns(id),
    title TEXT NOT NULL,
    description TEXT DEFAULT '',
    agent_status TEXT NOT NULL DEFAULT 'idle'
        CHECK (agent_status IN ('idle', 'executing', 'error')),
    agent_status_message TEXT,
    error_message TEXT,
    in_progress INTEGER NOT NULL DEFAULT 0,
    executed_hooks TEXT NOT NULL DEFAULT '[]',
    worktree_path TEXT,
    branch_name TEXT,
    auto_start INTEGER NOT NULL DEFAULT 0,
    created_at TEXT DEFAULT (datetime('now')),
    updated_at TEXT DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS hook_executions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    task_id TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
    column_hook_id INTEGER REFERENCES column_hooks(id) ON DELETE SET NULL,
    hook_id TEXT NOT NULL,
    hook_name TEXT NOT NULL,
    hook_settings TEXT NOT NULL DEFAULT '{}',
    triggering_column_id INTEGER,
    status TEXT NOT NULL DEFAULT 'pending'
        CHECK (status IN ('pending', 'running', 'completed', 'failed', 'cancelled', 'skipped')),
    skip_reason TEXT
        CHECK (skip_reason IS NULL OR skip_reason IN
               ('error', 'disabled', 'column_change', 'server_restart', 'user_cancelled')),
    error_message TEXT,
    result TEXT,
    queued_at TEXT NOT NULL,
    started_at TEXT,
    completed_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_hook_executions_task
    ON hook_executions(task_id, status);
CREATE INDEX IF NOT EXISTS idx_column_hooks_column
    ON column_hooks(column_id, position);
"""


def init_db(db_path: Path) -> sqlite3.Connection:
    """Initialize the database, creating tables if needed.

    Every thread that touches the database opens its own connection through
    this function; WAL mode lets readers run alongside the task actors.
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path), timeout=30.0, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    conn.executescript(SCHEMA)
    conn.commit()
    _run_migrations(conn)
    return conn


def _run_migrations(conn: sqlite3.Connection):
    """Run schema migrations idempotently."""
    migrations = [
        "ALTER TABLE tasks ADD COLUMN auto_start INTEGER NOT NULL DEFAULT 0",
        "ALTER TABLE hook_executions ADD COLUMN result TEXT",
    ]
    for sql in migrations:
        try:
            conn.execute(sql)
        except sqlite3.OperationalError:
            pass  # Column already exists
    conn.commit()


@contextmanager
def get_db(db_path: Path):
    """Context manager for database connections."""
    conn = init_db(db_path)
    try:
        yield conn
    finally:
        conn.close()
