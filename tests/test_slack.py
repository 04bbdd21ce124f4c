"""Tests for Slack failure notifications and config loading."""

import tempfile
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from hookboard.config import Config
from hookboard.core import boards as boards_mod
from hookboard.core import tasks as tasks_mod
from hookboard.db.engine import init_db
from hookboard.events import HOOK_COMPLETED, HOOK_FAILED, HookEvent
from hookboard.integrations.slack import (
    SlackError,
    SlackNotifier,
    format_hook_failure,
    send_message,
)


@pytest.fixture
def db_path():
    with tempfile.TemporaryDirectory() as tmp:
        db_path = Path(tmp) / "test.db"
        db = init_db(db_path)
        boards_mod.create_board(db, "demo", "Demo", tmp, slack_channel="#builds")
        boards_mod.add_column(db, "demo", "Todo")
        tasks_mod.create_task(db, "demo", "Ship it")
        db.close()
        yield db_path


def _event(kind=HOOK_FAILED, transparent=False):
    return HookEvent(
        event=kind,
        hook_id="lint",
        hook_name="Lint",
        task_id="ship-it",
        column_id=1,
        execution_id=1,
        transparent=transparent,
        error="Hook 'Lint' failed with exit code 1: boom",
    )


class TestSlackNotifier:
    def test_posts_blocking_failure(self, db_path):
        notifier = SlackNotifier(db_path, "xoxb-test")
        with patch("hookboard.integrations.slack.send_message") as mock_send:
            notifier.notify(_event())
        mock_send.assert_called_once()
        token, channel, text, blocks = mock_send.call_args.args
        assert (token, channel) == ("xoxb-test", "#builds")
        assert "exit code 1" in text
        assert "Ship it" in blocks[0]["text"]["text"]

    def test_ignores_other_events(self, db_path):
        notifier = SlackNotifier(db_path, "xoxb-test")
        with patch("hookboard.integrations.slack.threading.Thread") as mock_thread:
            notifier(_event(kind=HOOK_COMPLETED))
            notifier(_event(transparent=True))
            SlackNotifier(db_path, None)(_event())
        mock_thread.assert_not_called()

    def test_send_errors_are_logged(self, db_path):
        notifier = SlackNotifier(db_path, "xoxb-test")
        with patch(
            "hookboard.integrations.slack.send_message", side_effect=SlackError("down")
        ):
            notifier.notify(_event())

    def test_send_message_requires_token(self):
        with pytest.raises(SlackError):
            send_message(None, "#builds", "hi")

    def test_send_message_uses_client(self):
        client = MagicMock()
        client.chat_postMessage.return_value = {"channel": "C1", "ts": "123.4"}
        with patch("hookboard.integrations.slack.get_client", return_value=client):
            msg = send_message("xoxb-test", "#builds", "hi")
        assert (msg.channel, msg.ts, msg.text) == ("C1", "123.4", "hi")

    def test_format_truncates_error(self):
        blocks = format_hook_failure("t", "Title", "Lint", "x" * 2000)
        assert len(blocks[0]["text"]["text"]) < 700


class TestConfig:
    def test_defaults(self, monkeypatch):
        for var in ("HB_DB_PATH", "HB_HOOK_TIMEOUT", "HB_SHELL", "SLACK_BOT_TOKEN"):
            monkeypatch.delenv(var, raising=False)
        config = Config.from_env()
        assert config.hook_timeout == 300.0
        assert config.shell == "/bin/bash"
        assert config.slack_bot_token is None

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("HB_DB_PATH", "/tmp/hb.db")
        monkeypatch.setenv("HB_HOOK_TIMEOUT", "12")
        monkeypatch.setenv("HB_MAX_RESTARTS", "5")
        config = Config.from_env()
        assert config.db_path == Path("/tmp/hb.db")
        assert config.hook_timeout == 12.0
        assert config.max_restarts == 5
