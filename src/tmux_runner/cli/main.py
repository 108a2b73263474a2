"""CLI entrypoints for tmux-runner."""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from typing import Optional

import typer

from tmux_runner.app import AppConfigError, initialize_config, run_command
from tmux_runner.config import apply_env_overrides, load_config
from tmux_runner.execution.base import LiteralArgs, ShellCommand, TmuxError
from tmux_runner.util.logging import configure_logging, enable_debug_logging

app = typer.Typer(help="Run commands in tmux windows and capture their output.")


@app.callback()
def main(
    ctx: typer.Context,
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        help="Logging level (e.g., DEBUG, INFO, WARNING). Defaults to the configured level.",
    ),
) -> None:
    """Configure CLI-level options."""

    ctx.obj = log_level
    configure_logging(log_level or "INFO")


@app.command()
def init(workspace: Path = typer.Argument(Path("."))) -> None:
    """Write a default tmux_runner.yaml into a workspace."""

    try:
        config_path = initialize_config(workspace)
    except AppConfigError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    typer.echo(f"Created configuration at {config_path}")


@app.command(
    "run",
    context_settings={"allow_interspersed_args": False},
)
def run_cmd(
    ctx: typer.Context,
    command: Optional[list[str]] = typer.Argument(
        None,
        help="Command to run; multiple words are joined into one shell command line.",
    ),
    literal: bool = typer.Option(
        False,
        "--literal",
        help="Pass the words as literal arguments instead of a shell command line.",
    ),
    timeout_s: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Seconds to wait for completion; 0 waits forever.",
    ),
    socket_path: Optional[str] = typer.Option(
        None,
        "--socket",
        help="tmux socket path; an empty string uses the current session.",
    ),
    window_prefix: Optional[str] = typer.Option(
        None,
        "--prefix",
        help="Prefix for the tmux window name.",
    ),
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        help="Configuration file or directory containing one.",
    ),
) -> None:
    """Run a command in a new tmux window and report its output."""

    if not command:
        typer.echo("Usage: tmux-runner run <command to run in new window>", err=True)
        typer.echo("Example: tmux-runner run 'ls -l && echo Done.'", err=True)
        typer.echo(
            "\nOptional: set TMUX_WINDOW_PREFIX to customize the window name", err=True
        )
        raise typer.Exit(code=1)

    try:
        config = apply_env_overrides(load_config(config_path))
        if timeout_s is not None:
            config = replace(config, timeout_s=timeout_s if timeout_s > 0 else None)
        if socket_path is not None:
            config = replace(config, socket_path=socket_path.strip() or None)
        if window_prefix:
            config = replace(config, window_prefix=window_prefix)
    except ValueError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    if ctx.obj is None:
        configure_logging(config.effective_log_level)
    if config.debug:
        enable_debug_logging()

    spec = LiteralArgs(tuple(command)) if literal else ShellCommand(" ".join(command))
    try:
        result = run_command(spec, config, reporter=typer.echo)
    except TmuxError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    if result.error:
        typer.echo(f"Error: {result.error}", err=True)
    raise typer.Exit(code=result.exit_code)
