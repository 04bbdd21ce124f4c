"""The built-in hook catalog."""

import logging
from pathlib import Path

from hookboard.actors.results import HookResult
from hookboard.core import boards as boards_mod
from hookboard.core import tasks as tasks_mod
from hookboard.system_hooks.base import SystemContext, SystemHook

logger = logging.getLogger(__name__)

SOUNDS = ("ding", "bell", "chime", "success", "notification")


class ExecuteAI(SystemHook):
    id = "system:execute-ai"
    name = "Execute AI"
    description = "Run the task's title and description through the configured AI agent"
    default_execute_once = False
    settings_schema = {
        "agent_executor": {"default": "claude_code"},
        "auto_approve": {"default": False},
    }

    def execute(self, ctx: SystemContext) -> HookResult:
        if ctx.run_agent is None:
            return HookResult.failure("error", "No agent runner available")
        prompt = ctx.task.title
        if ctx.task.description:
            prompt += f"\n\n{ctx.task.description}"
        return ctx.run_agent(
            prompt,
            executor=ctx.settings.get("agent_executor", "claude_code"),
            auto_approve=bool(ctx.settings.get("auto_approve", False)),
        )


class CreateBranch(SystemHook):
    id = "system:create-branch"
    name = "Auto-Create Git Branch"
    description = "Record a feature/<slug> branch for the task when it has no worktree yet"
    default_execute_once = True

    def execute(self, ctx: SystemContext) -> HookResult:
        task = ctx.task
        if task.worktree_path and Path(task.worktree_path).exists():
            return HookResult.skipped(f"Worktree already exists at {task.worktree_path}")
        if task.branch_name:
            return HookResult.ok(f"Branch already set: {task.branch_name}")

        branch = f"feature/{tasks_mod.slugify(task.title) or task.id}"
        tasks_mod.set_branch_name(ctx.db, task.id, branch, ctx.pubsub)
        logger.info("Task %s assigned branch %s", task.id, branch)
        return HookResult.ok(branch, effects={"branch": {"name": branch}})


class PlaySound(SystemHook):
    id = "system:play-sound"
    name = "Play Sound"
    description = "Ask connected clients to play a notification sound"
    default_transparent = True
    settings_schema = {"sound": {"default": "ding", "options": list(SOUNDS)}}

    def execute(self, ctx: SystemContext) -> HookResult:
        sound = ctx.settings.get("sound", "ding")
        if sound not in SOUNDS:
            logger.warning("Unknown sound %r, falling back to ding", sound)
            sound = "ding"
        return HookResult.ok(sound, effects={"play_sound": {"sound": sound}})


class MoveTask(SystemHook):
    id = "system:move-task"
    name = "Move Task"
    description = "Move the task to the next column, the review column, or a column by name"
    default_transparent = True
    settings_schema = {"target_column": {"default": "next"}}

    def execute(self, ctx: SystemContext) -> HookResult:
        target = str(ctx.settings.get("target_column", "next")).strip()
        current = ctx.column_id if ctx.column_id is not None else ctx.task.column_id

        if target.lower() == "next":
            column = boards_mod.find_next_column(ctx.db, current)
        elif target.lower() == "review":
            column = boards_mod.find_review_column(ctx.db, ctx.task.board_id)
        else:
            column = boards_mod.find_column_by_name(ctx.db, ctx.task.board_id, target)

        if column is None:
            return HookResult.failure("error", f"Target column not found: {target}")
        if column.id == current:
            return HookResult.ok(f"Already in {column.name}")
        return HookResult.ok(
            column.name,
            effects={"move_task": {"column_id": column.id, "column_name": column.name}},
            move_to=column.id,
        )


class AutoStart(SystemHook):
    id = "system:auto-start"
    name = "Auto-Start Task"
    description = "Move tasks created with auto_start from Todo to the in-progress column"
    default_execute_once = True

    def execute(self, ctx: SystemContext) -> HookResult:
        current = ctx.column_id if ctx.column_id is not None else ctx.task.column_id
        column = boards_mod.get_column(ctx.db, current)
        if not ctx.task.auto_start or column is None or column.name.lower() != "todo":
            return HookResult.ok()

        target = boards_mod.find_in_progress_column(ctx.db, ctx.task.board_id)
        if target is None:
            return HookResult.failure("error", "Target column not found: In Progress")
        logger.info("Auto-starting task %s into %s", ctx.task.id, target.name)
        return HookResult.ok(
            target.name,
            effects={"move_task": {"column_id": target.id, "column_name": target.name}},
            move_to=target.id,
        )
