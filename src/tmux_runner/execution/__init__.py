"""Command execution in tmux windows."""

from tmux_runner.execution.base import (
    DEFAULT_TIMEOUT_S,
    DEFAULT_WINDOW_PREFIX,
    CommandFailedError,
    CommandRunner,
    CommandSpec,
    LiteralArgs,
    RunCancelledError,
    RunResult,
    ShellCommand,
    TmuxCommandError,
    TmuxEnvironmentError,
    TmuxError,
    as_command_spec,
)
from tmux_runner.execution.delimiter import find_delimiter
from tmux_runner.execution.runner import TmuxRunner
from tmux_runner.execution.tmux import TmuxClient

__all__ = [
    "DEFAULT_TIMEOUT_S",
    "DEFAULT_WINDOW_PREFIX",
    "CommandFailedError",
    "CommandRunner",
    "CommandSpec",
    "LiteralArgs",
    "RunCancelledError",
    "RunResult",
    "ShellCommand",
    "TmuxClient",
    "TmuxCommandError",
    "TmuxEnvironmentError",
    "TmuxError",
    "TmuxRunner",
    "as_command_spec",
    "find_delimiter",
]
