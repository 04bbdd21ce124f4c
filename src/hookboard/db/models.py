"""Data models for hookboard."""

from dataclasses import dataclass, field
from datetime import datetime

# Task agent_status values
IDLE = "idle"
EXECUTING = "executing"
ERROR = "error"

# HookExecution status values
PENDING = "pending"
RUNNING = "running"
COMPLETED = "completed"
FAILED = "failed"
CANCELLED = "cancelled"
SKIPPED = "skipped"

# HookExecution skip_reason values
SKIP_ERROR = "error"
SKIP_DISABLED = "disabled"
SKIP_COLUMN_CHANGE = "column_change"
SKIP_SERVER_RESTART = "server_restart"
SKIP_USER_CANCELLED = "user_cancelled"


@dataclass
class Board:
    id: str
    name: str
    repo_path: str
    slack_channel: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class Column:
    id: int
    board_id: str
    name: str
    position: int = 0
    settings: dict = field(default_factory=dict)
    created_at: datetime | None = None

    @property
    def hooks_enabled(self) -> bool:
        return bool(self.settings.get("hooks_enabled", True))


@dataclass
class Hook:
    """A user-defined hook or a system hook resolved from the registry."""

    id: str
    name: str
    kind: str = "script"
    board_id: str | None = None
    command: str | None = None
    working_directory: str = "worktree"
    timeout_seconds: float | None = None
    agent_prompt: str | None = None
    agent_executor: str = "claude_code"
    agent_auto_approve: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class ColumnHook:
    id: int
    column_id: int
    hook_id: str
    position: int = 0
    execute_once: bool = False
    transparent: bool = False
    removable: bool = True
    hook_settings: dict = field(default_factory=dict)
    created_at: datetime | None = None


@dataclass
class Task:
    id: str
    board_id: str
    column_id: int
    title: str
    description: str = ""
    agent_status: str = IDLE
    agent_status_message: str | None = None
    error_message: str | None = None
    in_progress: bool = False
    executed_hooks: list[int] = field(default_factory=list)
    worktree_path: str | None = None
    branch_name: str | None = None
    auto_start: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class HookExecution:
    id: int
    task_id: str
    hook_id: str
    hook_name: str
    status: str = PENDING
    column_hook_id: int | None = None
    hook_settings: dict = field(default_factory=dict)
    triggering_column_id: int | None = None
    skip_reason: str | None = None
    error_message: str | None = None
    result: str | None = None
    queued_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
