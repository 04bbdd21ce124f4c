"""Slack Web API integration."""

import logging
import threading
from dataclasses import dataclass
from pathlib import Path

from hookboard.core import boards as boards_mod
from hookboard.core import tasks as tasks_mod
from hookboard.db.engine import get_db
from hookboard.events import HOOK_FAILED, HookEvent

logger = logging.getLogger(__name__)


class SlackError(Exception):
    """Raised when a Slack operation fails."""


@dataclass
class SlackMessage:
    channel: str
    ts: str
    text: str


def get_client(token: str | None):
    """Get a Slack WebClient. Returns None if no token provided."""
    if not token:
        return None
    from slack_sdk import WebClient
    return WebClient(token=token)


def send_message(
    token: str | None,
    channel: str,
    text: str,
    blocks: list[dict] | None = None,
) -> SlackMessage:
    """Send a message to a Slack channel."""
    client = get_client(token)
    if not client:
        raise SlackError("Slack not configured: SLACK_BOT_TOKEN not set")

    response = client.chat_postMessage(
        channel=channel,
        text=text,
        blocks=blocks,
    )

    return SlackMessage(
        channel=response["channel"],
        ts=response["ts"],
        text=text,
    )


def format_hook_failure(task_id: str, title: str, hook_name: str, error: str | None) -> list[dict]:
    """Format a failed hook as Slack blocks."""
    detail = f"\n```{error[:500]}```" if error else ""
    return [
        {
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": f":x: *Hook failed: {hook_name}*\n*{title}* (`{task_id}`){detail}",
            },
        }
    ]


class SlackNotifier:
    """Posts blocking hook failures to the board's Slack channel."""

    def __init__(self, db_path: Path, token: str | None):
        self.db_path = db_path
        self.token = token

    def __call__(self, event: HookEvent):
        if event.event != HOOK_FAILED or event.transparent or not self.token:
            return
        threading.Thread(
            target=self.notify, args=(event,), name="slack-notify", daemon=True
        ).start()

    def notify(self, event: HookEvent):
        try:
            with get_db(self.db_path) as db:
                task = tasks_mod.get_task(db, event.task_id)
                if not task:
                    return
                board = boards_mod.get_board(db, task.board_id)
            if not board or not board.slack_channel:
                return
            blocks = format_hook_failure(task.id, task.title, event.hook_name, event.error)
            send_message(self.token, board.slack_channel, event.error or event.hook_name, blocks)
        except Exception:
            logger.exception("Failed to send Slack notification for hook %s", event.hook_name)
