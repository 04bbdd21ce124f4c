"""Normalized outcome of one hook run."""

from dataclasses import dataclass, field

OK = "ok"
WAITING_FOR_USER = "waiting_for_user"
SKIPPED = "skipped"
FAILED = "failed"
CANCELLED = "cancelled"

# Failure reasons
EXIT_CODE = "exit_code"
TIMEOUT = "timeout"
NOT_FOUND = "not_found"
PERMISSION_DENIED = "permission_denied"
AGENT_ERROR = "agent_error"
INTERNAL_ERROR = "error"


@dataclass
class HookResult:
    status: str
    output: str = ""
    exit_code: int | None = None
    reason: str | None = None
    effects: dict = field(default_factory=dict)
    move_to: int | None = None

    @property
    def succeeded(self) -> bool:
        """Results that let the queue advance. waiting_for_user counts as success."""
        return self.status in (OK, WAITING_FOR_USER, SKIPPED)

    @classmethod
    def ok(cls, output: str = "", exit_code: int | None = 0, **kwargs) -> "HookResult":
        return cls(OK, output=output, exit_code=exit_code, **kwargs)

    @classmethod
    def failure(cls, reason: str, output: str = "", exit_code: int | None = None) -> "HookResult":
        return cls(FAILED, output=output, exit_code=exit_code, reason=reason)

    @classmethod
    def skipped(cls, output: str = "") -> "HookResult":
        return cls(SKIPPED, output=output)

    @classmethod
    def cancelled(cls) -> "HookResult":
        return cls(CANCELLED)


def format_error_message(hook_name: str, result: HookResult) -> str:
    """The task-visible error for a failed hook."""
    if result.reason == TIMEOUT:
        return f"Hook '{hook_name}' timed out"
    if result.reason == EXIT_CODE:
        return f"Hook '{hook_name}' failed with exit code {result.exit_code}: {result.output[:200]}"
    if result.reason == NOT_FOUND:
        return f"Hook '{hook_name}' failed: command not found"
    if result.reason == PERMISSION_DENIED:
        return f"Hook '{hook_name}' failed: permission denied"
    return f"Hook '{hook_name}' failed: {result.output[:200] or result.reason}"
