"""Board and column management operations, plus column lookups."""

import json
import sqlite3
from datetime import datetime

from hookboard.db.models import Board, Column
from hookboard.events import BOARDS_TOPIC, INSERT, BoardChange, PubSub


# ── Boards ──────────────────────────────────────────────────────────────────


def create_board(
    db: sqlite3.Connection,
    board_id: str,
    name: str,
    repo_path: str,
    slack_channel: str | None = None,
    pubsub: PubSub | None = None,
) -> Board:
    """Create a new board."""
    db.execute(
        """INSERT INTO boards (id, name, repo_path, slack_channel)
           VALUES (?, ?, ?, ?)""",
        (board_id, name, repo_path, slack_channel),
    )
    db.commit()
    if pubsub:
        pubsub.publish(BOARDS_TOPIC, BoardChange(INSERT, board_id))
    return get_board(db, board_id)


def get_board(db: sqlite3.Connection, board_id: str) -> Board | None:
    """Get a board by ID."""
    row = db.execute("SELECT * FROM boards WHERE id = ?", (board_id,)).fetchone()
    if not row:
        return None
    return _row_to_board(row)


def list_boards(db: sqlite3.Connection) -> list[Board]:
    """List all boards."""
    rows = db.execute("SELECT * FROM boards ORDER BY created_at, id").fetchall()
    return [_row_to_board(r) for r in rows]


def update_board(
    db: sqlite3.Connection,
    board_id: str,
    **kwargs,
) -> Board | None:
    """Update board fields."""
    allowed = {"name", "repo_path", "slack_channel"}
    updates = {k: v for k, v in kwargs.items() if k in allowed and v is not None}
    if not updates:
        return get_board(db, board_id)

    set_clause = ", ".join(f"{k} = ?" for k in updates)
    values = list(updates.values()) + [board_id]
    db.execute(
        f"UPDATE boards SET {set_clause}, updated_at = datetime('now') WHERE id = ?",
        values,
    )
    db.commit()
    return get_board(db, board_id)


# ── Columns ─────────────────────────────────────────────────────────────────


def add_column(
    db: sqlite3.Connection,
    board_id: str,
    name: str,
    position: int | None = None,
    settings: dict | None = None,
) -> Column:
    """Add a column to a board. Appends after the last column by default."""
    if not get_board(db, board_id):
        raise ValueError(f"Board not found: {board_id}")
    if position is None:
        row = db.execute(
            "SELECT MAX(position) AS pos FROM columns WHERE board_id = ?", (board_id,)
        ).fetchone()
        position = 0 if row["pos"] is None else row["pos"] + 1

    cur = db.execute(
        "INSERT INTO columns (board_id, name, position, settings) VALUES (?, ?, ?, ?)",
        (board_id, name, position, json.dumps(settings or {})),
    )
    db.commit()
    return get_column(db, cur.lastrowid)


def get_column(db: sqlite3.Connection, column_id: int) -> Column | None:
    row = db.execute("SELECT * FROM columns WHERE id = ?", (column_id,)).fetchone()
    if not row:
        return None
    return _row_to_column(row)


def list_columns(db: sqlite3.Connection, board_id: str) -> list[Column]:
    """List a board's columns in board order."""
    rows = db.execute(
        "SELECT * FROM columns WHERE board_id = ? ORDER BY position, id",
        (board_id,),
    ).fetchall()
    return [_row_to_column(r) for r in rows]


def update_column_settings(
    db: sqlite3.Connection,
    column_id: int,
    **settings,
) -> Column | None:
    """Merge settings into a column's settings map."""
    column = get_column(db, column_id)
    if not column:
        return None
    merged = {**column.settings, **settings}
    db.execute(
        "UPDATE columns SET settings = ? WHERE id = ?",
        (json.dumps(merged), column_id),
    )
    db.commit()
    return get_column(db, column_id)


# ── Lookups ─────────────────────────────────────────────────────────────────


def find_column_by_name(
    db: sqlite3.Connection, board_id: str, name: str
) -> Column | None:
    """Find a column by name, ignoring case and surrounding whitespace."""
    wanted = name.strip().lower()
    for column in list_columns(db, board_id):
        if column.name.strip().lower() == wanted:
            return column
    return None


def find_next_column(db: sqlite3.Connection, column_id: int) -> Column | None:
    """The column right after the given one in board order, if any."""
    column = get_column(db, column_id)
    if not column:
        return None
    columns = list_columns(db, column.board_id)
    ids = [c.id for c in columns]
    index = ids.index(column_id)
    if index + 1 < len(columns):
        return columns[index + 1]
    return None


def find_review_column(db: sqlite3.Connection, board_id: str) -> Column | None:
    """The board's review column ("To Review", "Review", "In Review")."""
    return _find_column_matching(db, board_id, "review")


def find_in_progress_column(db: sqlite3.Connection, board_id: str) -> Column | None:
    """The board's in-progress column ("In Progress", "Doing")."""
    return _find_column_matching(db, board_id, "progress") or find_column_by_name(
        db, board_id, "doing"
    )


def _find_column_matching(
    db: sqlite3.Connection, board_id: str, fragment: str
) -> Column | None:
    for column in list_columns(db, board_id):
        if fragment in column.name.lower():
            return column
    return None


# ── Row-to-model helpers ────────────────────────────────────────────────────


def _row_to_board(row: sqlite3.Row) -> Board:
    return Board(
        id=row["id"],
        name=row["name"],
        repo_path=row["repo_path"],
        slack_channel=row["slack_channel"],
        created_at=_parse_dt(row["created_at"]),
        updated_at=_parse_dt(row["updated_at"]),
    )


def _row_to_column(row: sqlite3.Row) -> Column:
    return Column(
        id=row["id"],
        board_id=row["board_id"],
        name=row["name"],
        position=row["position"],
        settings=json.loads(row["settings"] or "{}"),
        created_at=_parse_dt(row["created_at"]),
    )


def _parse_dt(val: str | None) -> datetime | None:
    if val is None:
        return None
    return datetime.fromisoformat(val)
