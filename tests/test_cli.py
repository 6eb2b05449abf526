"""
Tests for the parley CLI.
"""

import pytest
from unittest.mock import patch

from parley import cli, config
from parley.storage.sqlite_store import SQLiteStore


@pytest.fixture
def config_path(tmp_path):
    config.reset_config()
    path = tmp_path / "config.yaml"
    path.write_text(
        "server:\n"
        "  host: 127.0.0.1\n"
        "  port: 9000\n"
        "chat:\n"
        "  agent_prefix: agent/\n"
        "storage:\n"
        f"  sqlite_path: {tmp_path / 'cli.db'}\n"
        f"  media_dir: {tmp_path / 'media'}\n"
    )
    yield str(path)
    config.reset_config()


def test_no_command_prints_help(capsys):
    assert cli.main([]) == 1
    assert "usage" in capsys.readouterr().out.lower()


def test_token_creates_session(config_path, tmp_path, capsys):
    assert cli.main(["--config", config_path, "token", "-u", "alice", "-w", "ws-1"]) == 0
    token = capsys.readouterr().out.strip()
    session = SQLiteStore(str(tmp_path / "cli.db")).get_session(token)
    assert session["user_id"] == "alice"
    assert session["workspace_id"] == "ws-1"


def test_agent_alias(config_path, tmp_path, capsys):
    """new-agent is an alias for agent."""
    assert cli.main([
        "-c", config_path, "new-agent", "-u", "alice", "-w", "ws-1",
        "-n", "Counsel", "-m", "openai/gpt-4o", "--prompt", "Review contracts.",
    ]) == 0
    out = capsys.readouterr().out
    assert "agent/" in out
    (agent,) = SQLiteStore(str(tmp_path / "cli.db")).list_agents("alice", "ws-1")
    assert agent.prompt == "Review contracts."


def test_stats(config_path, capsys):
    assert cli.main(["-c", config_path, "stats"]) == 0
    assert "Chats:" in capsys.readouterr().out


def test_models(config_path, capsys):
    assert cli.main(["-c", config_path, "models"]) == 0
    out = capsys.readouterr().out
    assert "chat-model" in out
    assert "generateImageDallE3" in out


def test_serve_runs_app_factory(config_path):
    with patch("uvicorn.run") as run:
        assert cli.main(["-c", config_path, "serve", "--port", "8123"]) == 0
    args, kwargs = run.call_args
    assert args[0] == "parley.main:create_app"
    assert kwargs["factory"] is True
    assert kwargs["host"] == "127.0.0.1"
    assert kwargs["port"] == 8123
