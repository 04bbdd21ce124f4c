"""Configuration loading from environment variables."""

import os
from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class Config:
    db_path: Path = field(default_factory=lambda: Path.home() / ".hookboard" / "hookboard.db")
    slack_bot_token: str | None = None
    shell: str = "/bin/bash"
    hook_timeout: float = 300.0
    agent_timeout: float = 7200.0
    agent_command: str = "claude"
    call_timeout: float = 30.0
    max_restarts: int = 3
    restart_window: float = 5.0

    @classmethod
    def from_env(cls) -> "Config":
        config = cls()

        if db := os.environ.get("HB_DB_PATH"):
            config.db_path = Path(db)

        config.slack_bot_token = os.environ.get("SLACK_BOT_TOKEN")

        if shell := os.environ.get("HB_SHELL"):
            config.shell = shell

        if timeout := os.environ.get("HB_HOOK_TIMEOUT"):
            config.hook_timeout = float(timeout)

        if timeout := os.environ.get("HB_AGENT_TIMEOUT"):
            config.agent_timeout = float(timeout)

        if command := os.environ.get("HB_AGENT_COMMAND"):
            config.agent_command = command

        if timeout := os.environ.get("HB_CALL_TIMEOUT"):
            config.call_timeout = float(timeout)

        if restarts := os.environ.get("HB_MAX_RESTARTS"):
            config.max_restarts = int(restarts)

        if window := os.environ.get("HB_RESTART_WINDOW"):
            config.restart_window = float(window)

        return config


def get_config() -> Config:
    return Config.from_env()
