"""In-process change feed and hook event stream.

Task mutations are published on a per-board topic so board watchers can
spawn, forward to, and terminate task actors. Hook lifecycle notifications go
out on the ``hooks`` topic for UI and notification consumers.
"""

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field

from hookboard.db.models import Task

logger = logging.getLogger(__name__)

HOOKS_TOPIC = "hooks"
BOARDS_TOPIC = "boards"

# TaskChange kinds
INSERT = "insert"
UPDATE = "update"
DELETE = "delete"

# HookEvent kinds
HOOK_STARTED = "hook_started"
HOOK_COMPLETED = "hook_completed"
HOOK_FAILED = "hook_failed"


def board_topic(board_id: str) -> str:
    return f"board:{board_id}:tasks"


@dataclass
class TaskChange:
    kind: str
    task: Task
    changed: tuple[str, ...] = ()


@dataclass
class BoardChange:
    kind: str
    board_id: str


@dataclass
class HookEvent:
    event: str
    hook_id: str
    hook_name: str
    task_id: str
    column_id: int | None
    execution_id: int
    transparent: bool = False
    result: str | None = None
    error: str | None = None
    effects: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "event": self.event,
            "hook_id": self.hook_id,
            "hook_name": self.hook_name,
            "task_id": self.task_id,
            "column_id": self.column_id,
            "execution_id": self.execution_id,
            "transparent": self.transparent,
            "result": self.result,
            "error": self.error,
            "effects": self.effects,
        }


class PubSub:
    """Topic based publish/subscribe with synchronous delivery.

    Callbacks run on the publisher's thread and must not block; subscribers
    that need to do real work hand the event off to their own thread.
    """

    def __init__(self):
        self._subscribers: dict[str, list[Callable]] = {}
        self._lock = threading.Lock()

    def subscribe(self, topic: str, callback: Callable) -> Callable[[], None]:
        """Register a callback for a topic. Returns an unsubscribe function."""
        with self._lock:
            self._subscribers.setdefault(topic, []).append(callback)

        def unsubscribe():
            with self._lock:
                callbacks = self._subscribers.get(topic, [])
                if callback in callbacks:
                    callbacks.remove(callback)

        return unsubscribe

    def publish(self, topic: str, message) -> None:
        with self._lock:
            callbacks = list(self._subscribers.get(topic, []))
        for callback in callbacks:
            try:
                callback(message)
            except Exception:
                logger.exception("Subscriber for %s failed", topic)
