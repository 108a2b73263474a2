"""Application wiring shared by the CLI and library callers."""

from __future__ import annotations

import json
from collections.abc import Sequence
from pathlib import Path

from tmux_runner.config import RunnerConfig, config_to_dict
from tmux_runner.execution.base import CommandSpec, RunResult
from tmux_runner.execution.runner import Reporter, TmuxRunner
from tmux_runner.jobs.scheduler import JobScheduler
from tmux_runner.util.logging import get_logger
from tmux_runner.util.observability import (
    ObservabilityManager,
    create_observability_manager,
)

CONFIG_FILE_NAME = "tmux_runner.yaml"


class AppConfigError(RuntimeError):
    """Raised when configuration or runtime setup fails."""


_LOGGER = get_logger("tmux_runner.app")


def initialize_config(workspace: Path) -> Path:
    """Write a default configuration file into the workspace.

    Args:
        workspace: Directory where the config should be written.

    Returns:
        Path to the generated configuration file.

    Raises:
        AppConfigError: If the config file already exists.
    """

    workspace = workspace.resolve()
    config_path = workspace / CONFIG_FILE_NAME
    if config_path.exists():
        raise AppConfigError(
            f"Config file already exists at {config_path}. Remove it or choose another "
            "workspace."
        )
    config_path.write_text(json.dumps(config_to_dict(RunnerConfig()), indent=2), encoding="utf-8")
    _LOGGER.info("Initialized configuration at %s", config_path)
    return config_path


def build_runner(
    config: RunnerConfig,
    *,
    reporter: Reporter | None = None,
    observability: ObservabilityManager | None = None,
) -> TmuxRunner:
    """Create a TmuxRunner from configuration."""

    return TmuxRunner(
        config.socket_path,
        poll_interval_s=config.poll_interval_s,
        settle_delay_s=config.settle_delay_s,
        reporter=reporter,
        observability=observability,
    )


def build_scheduler(
    config: RunnerConfig,
    *,
    observability: ObservabilityManager | None = None,
) -> JobScheduler:
    """Create a JobScheduler whose jobs run through a configured TmuxRunner.

    The scheduler and its runner share one observability manager, so job events
    and run metrics land in the same place.
    """

    observability = observability or create_observability_manager()
    runner = build_runner(config, observability=observability)
    return JobScheduler(runner, observability=observability)


def run_command(
    command: str | Sequence[str] | CommandSpec,
    config: RunnerConfig,
    *,
    reporter: Reporter | None = None,
) -> RunResult:
    """Run one command with the configured window prefix and timeout."""

    _LOGGER.debug(
        "Running with socket=%s prefix=%s timeout=%s",
        config.socket_path,
        config.window_prefix,
        config.timeout_s,
    )
    runner = build_runner(config, reporter=reporter)
    result = runner.run(command, window_prefix=config.window_prefix, timeout_s=config.timeout_s)
    _LOGGER.debug("Run metrics: %s", runner.observability.metrics.snapshot())
    return result
