"""Command specs, run results and the runner interface."""

from __future__ import annotations

import shlex
import threading
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Final, Union

DEFAULT_WINDOW_PREFIX: Final[str] = "tmux_runner"
DEFAULT_TIMEOUT_S: Final[float] = 600.0
PARSE_FAILURE_EXIT_CODE: Final[int] = -1


class TmuxError(RuntimeError):
    """Raised when tmux commands fail or tmux is not installed."""


class TmuxCommandError(TmuxError):
    """Raised when a tmux subprocess exits with a non-zero status.

    Attributes:
        args_list: Arguments passed to tmux (without the binary).
        returncode: Exit status of the tmux process.
        stderr: Captured standard error.
    """

    def __init__(self, args_list: Sequence[str], returncode: int, stderr: str) -> None:
        self.args_list = list(args_list)
        self.returncode = returncode
        self.stderr = stderr
        detail = stderr.strip() or "no error output"
        super().__init__(
            f"tmux {' '.join(self.args_list)} failed with exit code {returncode}: {detail}"
        )


class TmuxEnvironmentError(TmuxError):
    """Raised when no usable tmux session or window can be set up."""


class RunCancelledError(RuntimeError):
    """Raised inside a run when its cancel event has been set."""


class CommandFailedError(RuntimeError):
    """Raised by checked runs when the command does not exit with 0."""

    def __init__(self, result: RunResult) -> None:
        self.result = result
        super().__init__(
            f"Command failed with exit code {result.exit_code}: {result.output}"
        )


@dataclass(frozen=True)
class ShellCommand:
    """A command line interpreted by the pane's shell (pipes, expansion, ...)."""

    text: str

    def render(self) -> str:
        """Return the command text to inject."""

        return self.text


@dataclass(frozen=True)
class LiteralArgs:
    """An argument vector whose elements reach the program verbatim."""

    args: tuple[str, ...]

    def render(self) -> str:
        """Return the arguments joined as individually shell-quoted words."""

        return " ".join(shlex.quote(arg) for arg in self.args)


CommandSpec = Union[ShellCommand, LiteralArgs]


def as_command_spec(command: str | Sequence[str] | CommandSpec) -> CommandSpec:
    """Coerce user input into a command spec.

    A plain string becomes a :class:`ShellCommand`; a list or tuple becomes
    :class:`LiteralArgs`.

    Raises:
        ValueError: If the command is empty.
    """

    if isinstance(command, (ShellCommand, LiteralArgs)):
        spec: CommandSpec = command
    elif isinstance(command, str):
        spec = ShellCommand(command)
    else:
        spec = LiteralArgs(tuple(str(arg) for arg in command))

    if isinstance(spec, ShellCommand) and not spec.text.strip():
        raise ValueError("Command must not be empty.")
    if isinstance(spec, LiteralArgs) and not spec.args:
        raise ValueError("Command must contain at least one argument.")
    return spec


@dataclass(frozen=True)
class RunResult:
    """Result of running a command in a tmux window.

    Attributes:
        output: Text printed between the start and end sentinels, trimmed. On a
            parse failure this holds the whole captured buffer instead.
        exit_code: Exit code of the command, or -1 when it could not be
            determined (timeout, parse failure, infrastructure error).
        error: Diagnostic message when the run itself went wrong.
        full_output: Raw pane capture the result was extracted from.
        window: tmux target of the window the command ran in.
        duration_s: Wall-clock duration of the run in seconds.
    """

    output: str
    exit_code: int
    error: str | None = None
    full_output: str = ""
    window: str | None = None
    duration_s: float = 0.0

    @property
    def success(self) -> bool:
        """Return True when the command exited with status 0."""

        return self.exit_code == 0


class CommandRunner(ABC):
    """Abstract base class for blocking command runners."""

    @abstractmethod
    def run(
        self,
        command: str | Sequence[str] | CommandSpec,
        *,
        window_prefix: str = DEFAULT_WINDOW_PREFIX,
        timeout_s: float | None = DEFAULT_TIMEOUT_S,
        cancel_event: threading.Event | None = None,
    ) -> RunResult:
        """Run a command to completion and capture its result.

        Args:
            command: Shell string, argument vector or prepared command spec.
            window_prefix: Prefix for the name of the window created for the run.
            timeout_s: Polling ceiling in seconds; ``None`` or ``0`` waits forever.
            cancel_event: Optional event that aborts the run when set.

        Returns:
            RunResult with output and exit code.

        Raises:
            TmuxEnvironmentError: If no session or window can be set up.
            RunCancelledError: If ``cancel_event`` is set during the run.
        """
