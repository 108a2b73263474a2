from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import pytest
from typer.testing import CliRunner

from tmux_runner.cli.main import app
from tmux_runner.config import RunnerConfig
from tmux_runner.execution.base import (
    CommandSpec,
    LiteralArgs,
    RunResult,
    ShellCommand,
    TmuxEnvironmentError,
)
from tmux_runner.execution.runner import format_output_block


@pytest.fixture
def captured(monkeypatch: Any, tmp_path: Path) -> dict[str, Any]:
    monkeypatch.chdir(tmp_path)
    for name in ("TMUX_RUNNER_DEBUG", "TMUX_WINDOW_PREFIX", "TMUX_SOCKET_PATH", "TMUX_RUNNER_TIMEOUT"):
        monkeypatch.delenv(name, raising=False)
    calls: dict[str, Any] = {"exit_code": 0, "output": "hello"}

    def fake_run_command(command: CommandSpec, config: RunnerConfig, *, reporter: Any) -> RunResult:
        calls["command"] = command
        calls["config"] = config
        reporter("Creating new tmux window: main:=tmux_runner_1")
        reporter(format_output_block(calls["output"], calls["exit_code"]))
        return RunResult(output=calls["output"], exit_code=calls["exit_code"])

    monkeypatch.setattr("tmux_runner.cli.main.run_command", fake_run_command)
    return calls


def test_cli_run_joins_words_into_shell_command(captured: dict[str, Any]) -> None:
    runner = CliRunner()

    result = runner.invoke(app, ["run", "echo", "a|b"])

    assert result.exit_code == 0
    assert captured["command"] == ShellCommand("echo a|b")
    assert "Creating new tmux window: main:=tmux_runner_1" in result.output
    assert "----------- COMMAND OUTPUT -----------\nhello\n" in result.output
    assert "Exit Code: 0" in result.output


def test_cli_run_literal_keeps_arguments_separate(captured: dict[str, Any]) -> None:
    runner = CliRunner()

    result = runner.invoke(app, ["run", "--literal", "grep", "-n", "a b", "file.txt"])

    assert result.exit_code == 0
    assert captured["command"] == LiteralArgs(("grep", "-n", "a b", "file.txt"))


def test_cli_run_exit_code_follows_command(captured: dict[str, Any]) -> None:
    captured["exit_code"] = 42
    runner = CliRunner()

    result = runner.invoke(app, ["run", "(exit 42)"])

    assert result.exit_code == 42
    assert "Exit Code: 42" in result.output


def test_cli_run_options_override_config(captured: dict[str, Any]) -> None:
    runner = CliRunner()

    result = runner.invoke(
        app,
        ["run", "--timeout", "0", "--socket", "", "--prefix", "build", "make"],
    )

    assert result.exit_code == 0
    config = captured["config"]
    assert config.timeout_s is None
    assert config.socket_path is None
    assert config.window_prefix == "build"


def test_cli_run_reads_environment(captured: dict[str, Any], monkeypatch: Any) -> None:
    monkeypatch.setenv("TMUX_SOCKET_PATH", "/tmp/other-socket")
    monkeypatch.setenv("TMUX_WINDOW_PREFIX", "envprefix")
    runner = CliRunner()

    result = runner.invoke(app, ["run", "true"])

    assert result.exit_code == 0
    assert captured["config"].socket_path == "/tmp/other-socket"
    assert captured["config"].window_prefix == "envprefix"


def test_cli_run_reports_environment_errors(monkeypatch: Any, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)

    def failing_run_command(command: CommandSpec, config: RunnerConfig, *, reporter: Any) -> RunResult:
        raise TmuxEnvironmentError("No tmux sessions found on socket /tmp/shared-session")

    monkeypatch.setattr("tmux_runner.cli.main.run_command", failing_run_command)
    runner = CliRunner()

    result = runner.invoke(app, ["run", "true"])

    assert result.exit_code == 1
    assert "Error: No tmux sessions found" in result.output


def test_cli_run_without_command_prints_usage(captured: dict[str, Any]) -> None:
    runner = CliRunner()

    result = runner.invoke(app, ["run"])

    assert result.exit_code == 1
    assert "Usage: tmux-runner run" in result.output
    assert "command" not in captured


def test_cli_init_creates_config_file(tmp_path: Path) -> None:
    runner = CliRunner()

    result = runner.invoke(app, ["init", str(tmp_path)])

    assert result.exit_code == 0
    config_path = tmp_path / "tmux_runner.yaml"
    assert config_path.exists()
    data = json.loads(config_path.read_text(encoding="utf-8"))
    assert data["window_prefix"] == "tmux_runner"

    again = runner.invoke(app, ["init", str(tmp_path)])
    assert again.exit_code == 1
    assert "already exists" in again.output


@pytest.fixture
def root_level() -> Iterator[logging.Logger]:
    root = logging.getLogger()
    previous = root.level
    yield root
    root.setLevel(previous)


def test_cli_run_applies_configured_log_level(
    captured: dict[str, Any], tmp_path: Path, root_level: logging.Logger
) -> None:
    (tmp_path / "tmux_runner.yaml").write_text('{"log_level": "WARNING"}', encoding="utf-8")
    runner = CliRunner()

    result = runner.invoke(app, ["run", "true"])

    assert result.exit_code == 0
    assert captured["config"].log_level == "WARNING"
    assert root_level.level == logging.WARNING


def test_cli_log_level_option_wins_over_config(
    captured: dict[str, Any], tmp_path: Path, root_level: logging.Logger
) -> None:
    (tmp_path / "tmux_runner.yaml").write_text('{"log_level": "WARNING"}', encoding="utf-8")
    runner = CliRunner()

    result = runner.invoke(app, ["--log-level", "ERROR", "run", "true"])

    assert result.exit_code == 0
    assert root_level.level == logging.ERROR
