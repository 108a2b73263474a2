"""Per-run sentinels and extraction of output from a final pane capture."""

from __future__ import annotations

import os
import re
import time
import uuid
from dataclasses import dataclass

from tmux_runner.execution.base import PARSE_FAILURE_EXIT_CODE
from tmux_runner.execution.delimiter import find_delimiter, strip_wrapping
from tmux_runner.util.logging import get_logger

_ANSI_CSI = re.compile(r"\x1b\[[0-9;?]*[A-Za-z]")
# Digits may start on the next row, or be split across rows, when the pane wraps.
_EXIT_CODE = re.compile(r"(?:\n ?)?(\d(?:(?:\n ?)?\d)*)")

_LOGGER = get_logger("tmux_runner.capture")


@dataclass(frozen=True)
class RunContext:
    """Names derived from one run's unique id.

    Attributes:
        unique_id: ``{pid}_{seconds}_{random}``; unique across concurrent runs.
        window_name: Name of the tmux window created for the run.
        start_sentinel: Marker echoed right before the command output.
        end_sentinel: Marker echoed right after it, followed by the exit code.
        channel: ``tmux wait-for`` channel signalled once the end marker is out.
    """

    unique_id: str
    window_name: str
    start_sentinel: str
    end_sentinel: str
    channel: str

    @classmethod
    def create(cls, window_prefix: str) -> RunContext:
        """Build a context with a fresh unique id."""

        unique_id = f"{os.getpid()}_{int(time.time())}_{uuid.uuid4().hex[:8]}"
        return cls(
            unique_id=unique_id,
            window_name=f"{window_prefix}_{unique_id}",
            start_sentinel=f"===START_{unique_id}===",
            end_sentinel=f"===END_{unique_id}===",
            channel=f"tmux_runner_chan_{unique_id}",
        )

    def instrument(self, command_text: str, signal_command: str) -> str:
        """Wrap ``command_text`` with sentinels, exit code capture and the signal.

        ``$?`` is saved right after the command so nothing can reset it, and the
        signal goes last so it only fires once the end sentinel is printed.
        """

        return (
            f"echo '{self.start_sentinel}'; "
            f"{command_text} 2>&1; "
            "EXIT_CODE=$?; "
            f"echo {self.end_sentinel}$EXIT_CODE; "
            f"{signal_command}"
        )


@dataclass(frozen=True)
class Extraction:
    """Output and exit code parsed from a capture.

    ``parsed`` is False when the sentinels could not be located; ``output`` then
    holds the whole buffer for diagnosis.
    """

    output: str
    exit_code: int
    parsed: bool
    error: str | None = None


def strip_ansi(text: str) -> str:
    """Remove ANSI CSI sequences (colors, cursor movement, line clears)."""

    return _ANSI_CSI.sub("", text)


def parse_exit_code(status_text: str) -> int | None:
    """Return the digits leading ``status_text`` once escape codes are removed.

    A line break from wrapping is allowed before and between the digits.
    """

    match = _EXIT_CODE.match(strip_ansi(status_text))
    if match is None:
        return None
    return int(strip_wrapping(match.group(1)))


def extract_output(buffer: str, context: RunContext) -> Extraction:
    """Extract command output and exit code from a final pane capture.

    Args:
        buffer: Full scrollback captured after the completion signal.
        context: Sentinels of the run.

    Returns:
        Extraction describing the output, or the parse failure.
    """

    start = find_delimiter(buffer, context.start_sentinel)
    end = find_delimiter(buffer, context.end_sentinel)

    output_start: int | None = None
    if start is not None:
        newline = buffer.find("\n", start[1])
        if newline == -1:
            _LOGGER.warning("Start sentinel found but no newline follows it.")
        else:
            output_start = newline + 1

    if start is None or output_start is None or end is None:
        message = (
            "Could not parse output, sentinels not found "
            f"(start found: {'yes' if start else 'no'}, end found: {'yes' if end else 'no'})."
        )
        return Extraction(buffer, PARSE_FAILURE_EXIT_CODE, parsed=False, error=message)

    if start[0] >= end[0]:
        message = (
            f"Start sentinel found after end sentinel (start index {start[0]}, "
            f"end index {end[0]})."
        )
        return Extraction(buffer, PARSE_FAILURE_EXIT_CODE, parsed=False, error=message)

    output = buffer[output_start : end[0]].strip()
    status_text = buffer[end[1] :]
    exit_code = parse_exit_code(status_text)
    if exit_code is None:
        _LOGGER.warning("Could not parse exit code from: %r", status_text[:50])
        return Extraction(
            output,
            PARSE_FAILURE_EXIT_CODE,
            parsed=True,
            error="Could not parse exit code.",
        )
    return Extraction(output, exit_code, parsed=True)
