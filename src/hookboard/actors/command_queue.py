"""Immutable FIFO of hook commands for one column entry."""

from dataclasses import dataclass, field, replace


@dataclass(frozen=True)
class HookCommand:
    """One queued hook invocation, tied to its ledger row."""

    execution_id: int
    column_hook_id: int
    hook_id: str
    hook_name: str
    transparent: bool = False
    execute_once: bool = False
    settings: dict = field(default_factory=dict, hash=False, compare=False)


@dataclass(frozen=True)
class CommandQueue:
    """A point-in-time snapshot of the hooks to run.

    Every operation returns a new queue, so the owner can swap its queue out
    in one assignment when cancelling.
    """

    items: tuple = ()
    current: HookCommand | None = None

    @classmethod
    def new(cls) -> "CommandQueue":
        return cls()

    def push(self, command: HookCommand) -> "CommandQueue":
        return replace(self, items=self.items + (command,))

    def push_all(self, commands) -> "CommandQueue":
        return replace(self, items=self.items + tuple(commands))

    def pop(self) -> tuple[HookCommand, "CommandQueue"] | None:
        """Take the head and mark it as executing. None when nothing is queued."""
        if not self.items:
            return None
        head, rest = self.items[0], self.items[1:]
        return head, CommandQueue(items=rest, current=head)

    def complete_current(self) -> "CommandQueue":
        return replace(self, current=None)

    def clear(self) -> "CommandQueue":
        return CommandQueue()

    @property
    def executing(self) -> bool:
        return self.current is not None

    @property
    def empty(self) -> bool:
        return not self.items

    def to_list(self) -> list[HookCommand]:
        return list(self.items)

    def __len__(self) -> int:
        return len(self.items)
