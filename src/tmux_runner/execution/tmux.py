"""Subprocess wrapper around the tmux command-line interface."""

from __future__ import annotations

import shlex
import subprocess
import threading
from pathlib import Path
from typing import Final

from tmux_runner.execution.base import RunCancelledError, TmuxCommandError, TmuxError
from tmux_runner.util.logging import get_logger

WAIT_POLL_INTERVAL_S: Final[float] = 0.1


class TmuxClient:
    """Issue tmux commands, optionally against a dedicated server socket."""

    def __init__(self, socket_path: Path | str | None = None, binary: str = "tmux") -> None:
        """Initialize the client.

        Args:
            socket_path: Server socket passed as ``-S``; None targets the
                default server (or the one named by ``$TMUX``).
            binary: tmux executable to invoke.
        """

        self._socket_path = str(socket_path) if socket_path else None
        self._binary = binary
        self._logger = get_logger(self.__class__.__name__)

    @property
    def socket_path(self) -> str | None:
        """Return the socket this client talks to, if any."""

        return self._socket_path

    def list_sessions(self) -> list[str]:
        """Return the names of all sessions on the server."""

        output = self._run(["list-sessions"])
        names = [line.split(":", 1)[0].strip() for line in output.splitlines()]
        return [name for name in names if name]

    def current_session(self) -> str:
        """Return the session tmux considers current."""

        return self._run(["display-message", "-p", "#{session_name}"]).strip()

    def new_window(self, session: str, name: str) -> None:
        """Create a detached window named ``name`` at the end of ``session``."""

        self._run(["new-window", "-d", "-t", f"{session}:", "-n", name])

    def send_keys(self, target: str, text: str, *, enter: bool = True) -> None:
        """Type ``text`` literally into ``target``, then press Enter."""

        self._run(["send-keys", "-t", target, "-l", text])
        if enter:
            self._run(["send-keys", "-t", target, "Enter"])

    def capture_pane(self, target: str) -> str:
        """Return the full scrollback of the pane at ``target``."""

        return self._run(["capture-pane", "-p", "-S", "-", "-E", "-", "-t", target])

    def try_capture_pane(self, target: str) -> str | None:
        """Capture the pane, returning None when tmux cannot read it yet."""

        try:
            return self.capture_pane(target)
        except TmuxCommandError as exc:
            self._logger.debug("capture-pane not ready: %s", exc)
            return None

    def kill_window(self, target: str) -> None:
        """Destroy the window at ``target``."""

        self._run(["kill-window", "-t", target])

    def wait_for(self, channel: str, cancel_event: threading.Event | None = None) -> None:
        """Block until ``channel`` is signalled.

        Args:
            channel: ``wait-for`` channel name.
            cancel_event: When set while waiting, the tmux process is killed and
                :class:`RunCancelledError` is raised.

        Raises:
            TmuxCommandError: If ``tmux wait-for`` exits with an error.
            RunCancelledError: If ``cancel_event`` is set.
        """

        args = ["wait-for", channel]
        try:
            process = subprocess.Popen(
                self._command(args),
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
            )
        except FileNotFoundError:
            raise TmuxError("tmux is not installed") from None

        while True:
            try:
                _, stderr = process.communicate(timeout=WAIT_POLL_INTERVAL_S)
                break
            except subprocess.TimeoutExpired:
                if cancel_event is not None and cancel_event.is_set():
                    process.kill()
                    process.communicate()
                    raise RunCancelledError(f"Cancelled while waiting on {channel}") from None

        if process.returncode != 0:
            raise TmuxCommandError(args, process.returncode, stderr or "")

    def signal_command(self, channel: str) -> str:
        """Return the shell command that signals ``channel`` from inside a pane."""

        return " ".join(shlex.quote(arg) for arg in self._command(["wait-for", "-S", channel]))

    def kill_window_command(self, target: str) -> str:
        """Return the shell command that removes ``target`` by hand."""

        return " ".join(shlex.quote(arg) for arg in self._command(["kill-window", "-t", target]))

    def _command(self, args: list[str]) -> list[str]:
        if self._socket_path:
            return [self._binary, "-S", self._socket_path, *args]
        return [self._binary, *args]

    def _run(self, args: list[str]) -> str:
        self._logger.debug("Running tmux %s", args)
        try:
            completed = subprocess.run(
                self._command(args),
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError:
            raise TmuxError("tmux is not installed") from None
        if completed.returncode != 0:
            raise TmuxCommandError(args, completed.returncode, completed.stderr or "")
        return completed.stdout
