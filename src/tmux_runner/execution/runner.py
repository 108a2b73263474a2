"""Run commands in tmux windows and recover their output and exit code."""

from __future__ import annotations

import os
import threading
import time
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Final

from tmux_runner.execution.base import (
    DEFAULT_TIMEOUT_S,
    DEFAULT_WINDOW_PREFIX,
    PARSE_FAILURE_EXIT_CODE,
    CommandFailedError,
    CommandRunner,
    CommandSpec,
    RunCancelledError,
    RunResult,
    TmuxCommandError,
    TmuxEnvironmentError,
    as_command_spec,
)
from tmux_runner.execution.capture import RunContext, extract_output
from tmux_runner.execution.delimiter import find_delimiter
from tmux_runner.execution.tmux import TmuxClient
from tmux_runner.util.logging import get_logger
from tmux_runner.util.observability import (
    ObservabilityManager,
    create_observability_manager,
)

OUTPUT_HEADER: Final[str] = "----------- COMMAND OUTPUT -----------"
OUTPUT_SEPARATOR: Final[str] = "------------------------------------"

Reporter = Callable[[str], None]


def format_output_block(output: str, exit_code: int) -> str:
    """Render the delimited output block shown after a run."""

    lines = ["", OUTPUT_HEADER]
    if output:
        lines.append(output)
    lines.extend([OUTPUT_SEPARATOR, f"Exit Code: {exit_code}", OUTPUT_SEPARATOR])
    return "\n".join(lines)


class TmuxRunner(CommandRunner):
    """Run commands in dedicated tmux windows.

    Each run gets its own detached window. The command is typed into it between
    two sentinel echoes; completion is first detected by polling the pane for
    the end sentinel and then confirmed through a ``tmux wait-for`` channel the
    command line signals last. Windows of successful runs are closed, the rest
    stay open for inspection.
    """

    def __init__(
        self,
        socket_path: Path | str | None = None,
        *,
        client: TmuxClient | None = None,
        poll_interval_s: float = 0.1,
        settle_delay_s: float = 0.2,
        reporter: Reporter | None = None,
        observability: ObservabilityManager | None = None,
    ) -> None:
        """Initialize the runner.

        Args:
            socket_path: tmux server socket; None uses the current session.
            client: Prebuilt tmux client; defaults to one for ``socket_path``.
            poll_interval_s: Delay between pane captures while polling.
            settle_delay_s: Pause after creating the window and after sending keys.
            reporter: Optional sink for human-readable progress lines.
            observability: Metrics sink; a fresh manager is created when omitted.
        """

        self._socket_path = str(socket_path) if socket_path else None
        self._client = client or TmuxClient(self._socket_path)
        self._poll_interval_s = poll_interval_s
        self._settle_delay_s = settle_delay_s
        self._reporter = reporter
        self._observability = observability or create_observability_manager()
        self._logger = get_logger(self.__class__.__name__)
        self.last_exit_code: int | None = None
        self.last_output: str | None = None

    @property
    def socket_path(self) -> str | None:
        """Return the socket this runner targets, if any."""

        return self._socket_path

    @property
    def observability(self) -> ObservabilityManager:
        """Return the manager recording run metrics."""

        return self._observability

    def run(
        self,
        command: str | Sequence[str] | CommandSpec,
        *,
        window_prefix: str = DEFAULT_WINDOW_PREFIX,
        timeout_s: float | None = DEFAULT_TIMEOUT_S,
        cancel_event: threading.Event | None = None,
    ) -> RunResult:
        """Run a command in a new tmux window and wait for it to finish.

        Args:
            command: Shell string (interpreted by the pane's shell) or argument
                vector (every element passed literally).
            window_prefix: Prefix of the window name.
            timeout_s: Polling ceiling in seconds; ``None`` or ``0`` waits forever.
            cancel_event: Optional event that aborts the run when set.

        Returns:
            RunResult for the command. Timeouts and unparseable captures are
            reported with exit code -1 rather than raised.

        Raises:
            TmuxEnvironmentError: If the socket or session is unusable or the
                window cannot be created.
            RunCancelledError: If ``cancel_event`` is set during the run.
        """

        spec = as_command_spec(command)
        start = time.monotonic()
        with self._observability.track_duration("tmux.run"):
            result = self._run(spec, window_prefix, timeout_s, cancel_event, start)
        self._observability.metrics.increment(
            "runs.succeeded" if result.success else "runs.failed"
        )

        self.last_exit_code = result.exit_code
        self.last_output = result.output
        return result

    def run_checked(
        self,
        command: str | Sequence[str] | CommandSpec,
        *,
        window_prefix: str = DEFAULT_WINDOW_PREFIX,
        timeout_s: float | None = DEFAULT_TIMEOUT_S,
    ) -> str:
        """Run a command and return its output.

        Raises:
            CommandFailedError: If the command does not exit with status 0.
        """

        result = self.run(command, window_prefix=window_prefix, timeout_s=timeout_s)
        if not result.success:
            raise CommandFailedError(result)
        return result.output

    def resolve_session(self) -> str:
        """Return the session new windows are created in.

        Raises:
            TmuxEnvironmentError: If no session can be found.
        """

        if self._socket_path:
            if not (os.path.exists(self._socket_path) and os.access(self._socket_path, os.W_OK)):
                raise TmuxEnvironmentError(
                    f"Cannot access tmux socket at {self._socket_path}. "
                    "Please ensure the socket exists and you have write permissions."
                )
            try:
                sessions = self._client.list_sessions()
            except TmuxCommandError as exc:
                raise TmuxEnvironmentError(
                    f"Cannot list tmux sessions on socket {self._socket_path}: {exc}"
                ) from exc
            if not sessions:
                raise TmuxEnvironmentError(
                    f"No tmux sessions found on socket {self._socket_path}"
                )
            return sessions[0]

        try:
            current = self._client.current_session()
        except TmuxCommandError:
            current = ""
        if current:
            return current
        try:
            sessions = self._client.list_sessions()
        except TmuxCommandError as exc:
            raise TmuxEnvironmentError(
                f"Cannot list tmux sessions using default tmux session: {exc}"
            ) from exc
        if not sessions:
            raise TmuxEnvironmentError("No tmux sessions found using default tmux session")
        return sessions[0]

    def _run(
        self,
        spec: CommandSpec,
        window_prefix: str,
        timeout_s: float | None,
        cancel_event: threading.Event | None,
        started: float,
    ) -> RunResult:
        session = self.resolve_session()
        context = RunContext.create(window_prefix)
        target = f"{session}:={context.window_name}"

        self._report(f"Creating new tmux window: {target}")
        try:
            self._client.new_window(session, context.window_name)
        except TmuxCommandError as exc:
            raise TmuxEnvironmentError(f"Failed to create tmux window {target}: {exc}") from exc
        self._sleep(self._settle_delay_s, cancel_event)

        line = context.instrument(spec.render(), self._client.signal_command(context.channel))
        try:
            self._client.send_keys(target, line)
        except TmuxCommandError as exc:
            self._discard_window(target)
            raise TmuxEnvironmentError(f"Failed to send command to {target}: {exc}") from exc

        self._report("Running command and waiting for completion...")
        self._sleep(self._settle_delay_s, cancel_event)

        found, pane_content = self._poll_for_end(target, context, timeout_s, cancel_event)
        if not found:
            message = f"Command timed out after {_describe_timeout(timeout_s)}"
            self._logger.error("%s (window %s)", message, target)
            self._count("runs.timed_out")
            result = RunResult(
                output="",
                exit_code=PARSE_FAILURE_EXIT_CODE,
                error=message,
                full_output=pane_content,
                window=target,
                duration_s=time.monotonic() - started,
            )
            self._finish(result)
            return result

        self._client.wait_for(context.channel, cancel_event)
        pane_content = self._client.capture_pane(target)
        extraction = extract_output(pane_content, context)

        if not extraction.parsed:
            self._count("runs.parse_failed")
            self._logger.error(
                "%s Expected markers %s and %s. Buffer:\n%s",
                extraction.error,
                context.start_sentinel,
                context.end_sentinel,
                pane_content,
            )
        elif not extraction.output:
            self._logger.debug(
                "Command completed with no output between sentinels. Buffer:\n%s",
                pane_content,
            )

        result = RunResult(
            output=extraction.output,
            exit_code=extraction.exit_code,
            error=extraction.error,
            full_output=pane_content,
            window=target,
            duration_s=time.monotonic() - started,
        )
        self._finish(result)
        return result

    def _poll_for_end(
        self,
        target: str,
        context: RunContext,
        timeout_s: float | None,
        cancel_event: threading.Event | None,
    ) -> tuple[bool, str]:
        deadline = None if not timeout_s else time.monotonic() + timeout_s
        pane_content = ""
        iterations = 0
        found = False
        while True:
            iterations += 1
            captured = self._client.try_capture_pane(target)
            if captured is not None:
                pane_content = captured
                match = find_delimiter(captured, context.end_sentinel)
                if match is not None:
                    self._logger.debug("Found end sentinel at position %s", match[0])
                    found = True
                    break
            if deadline is not None and time.monotonic() >= deadline:
                break
            self._sleep(self._poll_interval_s, cancel_event)

        self._logger.debug(
            "Poll loop finished after %s iterations; end sentinel %s",
            iterations,
            "found" if found else "NOT FOUND",
        )
        return found, pane_content

    def _finish(self, result: RunResult) -> None:
        self._report(format_output_block(result.output, result.exit_code))
        if result.window is None:
            return
        if result.exit_code == 0:
            self._report(f"Command succeeded. Closing window '{result.window}'.")
            self._client.kill_window(result.window)
            return
        self._report(
            "Command failed or script error occurred. "
            f"Leaving window '{result.window}' open for inspection."
        )
        self._report(
            f"To close it manually, run: {self._client.kill_window_command(result.window)}"
        )

    def _discard_window(self, target: str) -> None:
        try:
            self._client.kill_window(target)
        except TmuxCommandError as exc:
            self._logger.warning("Could not remove window %s: %s", target, exc)

    def _sleep(self, seconds: float, cancel_event: threading.Event | None) -> None:
        if cancel_event is None:
            time.sleep(seconds)
            return
        if cancel_event.wait(seconds):
            raise RunCancelledError("Run cancelled")

    def _report(self, message: str) -> None:
        self._logger.debug(message.strip())
        if self._reporter is not None:
            self._reporter(message)

    def _count(self, name: str) -> None:
        self._observability.metrics.increment(name)


def _describe_timeout(timeout_s: float | None) -> str:
    return f"{timeout_s:g} seconds" if timeout_s else "no timeout"
