"""Read-only catalog of built-in hooks, keyed by ``system:`` identifiers."""

from hookboard.actors.results import HookResult
from hookboard.system_hooks.base import PREFIX, SystemContext, SystemHook
from hookboard.system_hooks.hooks import (
    AutoStart,
    CreateBranch,
    ExecuteAI,
    MoveTask,
    PlaySound,
)


class SystemHookNotFound(LookupError):
    """Raised for an identifier outside the catalog."""


_CATALOG: dict[str, SystemHook] = {
    hook.id: hook for hook in (AutoStart(), ExecuteAI(), CreateBranch(), PlaySound(), MoveTask())
}


def is_system_hook(hook_id: str | None) -> bool:
    """Classify by identifier shape only; no lookup."""
    return isinstance(hook_id, str) and hook_id.startswith(PREFIX)


def get(hook_id: str) -> SystemHook:
    try:
        return _CATALOG[hook_id]
    except KeyError:
        raise SystemHookNotFound(f"System hook not found: {hook_id}") from None


def all() -> list[SystemHook]:
    return list(_CATALOG.values())


def execute(hook_id: str, ctx: SystemContext) -> HookResult:
    return get(hook_id).execute(ctx)
