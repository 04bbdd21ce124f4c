"""Base class and execution context for built-in hooks."""

import sqlite3
from collections.abc import Callable
from dataclasses import dataclass, field

from hookboard.actors.results import HookResult
from hookboard.db.models import Hook, Task
from hookboard.events import PubSub

PREFIX = "system:"


@dataclass
class SystemContext:
    """What a system hook gets to work with.

    ``run_agent`` runs an agent session through the hook runner so it can be
    cancelled like any agent hook.
    """

    db: sqlite3.Connection
    task: Task
    column_id: int | None
    settings: dict = field(default_factory=dict)
    pubsub: PubSub | None = None
    run_agent: Callable[..., HookResult] | None = None


class SystemHook:
    id: str = ""
    name: str = ""
    description: str = ""
    default_execute_once: bool = False
    default_transparent: bool = False
    settings_schema: dict = {}

    def execute(self, ctx: SystemContext) -> HookResult:
        raise NotImplementedError

    def as_hook(self) -> Hook:
        return Hook(id=self.id, name=self.name, kind="system")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "default_execute_once": self.default_execute_once,
            "default_transparent": self.default_transparent,
            "settings": self.settings_schema,
        }
