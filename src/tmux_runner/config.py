"""Configuration models and loaders for tmux-runner."""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

from tmux_runner.execution.base import DEFAULT_TIMEOUT_S, DEFAULT_WINDOW_PREFIX

DEFAULT_SOCKET_PATH = "/tmp/shared-session"
CONFIG_FILE_NAMES = ("tmux_runner.yaml", "tmux_runner.yml", "pyproject.toml")

ENV_DEBUG = "TMUX_RUNNER_DEBUG"
ENV_WINDOW_PREFIX = "TMUX_WINDOW_PREFIX"
ENV_SOCKET_PATH = "TMUX_SOCKET_PATH"
ENV_TIMEOUT = "TMUX_RUNNER_TIMEOUT"


@dataclass(frozen=True)
class RunnerConfig:
    """Settings for running commands in tmux.

    Attributes:
        socket_path: tmux server socket; None targets the current session.
        window_prefix: Prefix for names of the windows created per run.
        timeout_s: Polling ceiling in seconds; None waits forever.
        poll_interval_s: Delay between pane captures while polling.
        settle_delay_s: Pause after creating a window and after sending keys.
        debug: Whether diagnostic logging is enabled.
        log_level: Logging level used when ``debug`` is off.
    """

    socket_path: str | None = DEFAULT_SOCKET_PATH
    window_prefix: str = DEFAULT_WINDOW_PREFIX
    timeout_s: float | None = DEFAULT_TIMEOUT_S
    poll_interval_s: float = 0.1
    settle_delay_s: float = 0.2
    debug: bool = False
    log_level: str = "INFO"

    @property
    def effective_log_level(self) -> str:
        """Return DEBUG when debugging is enabled, otherwise ``log_level``."""

        return "DEBUG" if self.debug else self.log_level


def load_config(path: Path | None = None) -> RunnerConfig:
    """Load runner configuration from disk.

    Args:
        path: Optional path to a configuration file or a directory holding one.

    Returns:
        Parsed RunnerConfig with defaults applied when no config exists.
    """

    config_path = _resolve_config_path(path)
    if config_path is None:
        return RunnerConfig()

    if config_path.suffix in {".yaml", ".yml"}:
        raw_data = _load_yaml(config_path)
    elif config_path.name == "pyproject.toml" or config_path.suffix == ".toml":
        raw_data = _load_toml(config_path)
    else:
        raise ValueError(f"Unsupported config file type: {config_path}")

    return _parse_runner_config(raw_data)


def apply_env_overrides(
    config: RunnerConfig,
    environ: Mapping[str, str] | None = None,
) -> RunnerConfig:
    """Return a config copy with environment variable overrides applied.

    ``TMUX_SOCKET_PATH`` set to an empty string selects the current session
    instead of a socket; ``TMUX_RUNNER_TIMEOUT=0`` disables the timeout.
    """

    env = os.environ if environ is None else environ
    updates: dict[str, Any] = {}
    if ENV_DEBUG in env:
        updates["debug"] = env[ENV_DEBUG] == "1"
    if env.get(ENV_WINDOW_PREFIX):
        updates["window_prefix"] = env[ENV_WINDOW_PREFIX]
    if ENV_SOCKET_PATH in env:
        updates["socket_path"] = _optional_str(env[ENV_SOCKET_PATH])
    if env.get(ENV_TIMEOUT):
        updates["timeout_s"] = _optional_timeout(env[ENV_TIMEOUT])
    return replace(config, **updates) if updates else config


def config_to_dict(config: RunnerConfig) -> dict[str, Any]:
    """Serialize a RunnerConfig into a JSON-compatible dictionary."""

    return {
        "socket_path": config.socket_path,
        "window_prefix": config.window_prefix,
        "timeout_s": config.timeout_s,
        "poll_interval_s": config.poll_interval_s,
        "settle_delay_s": config.settle_delay_s,
        "debug": config.debug,
        "log_level": config.log_level,
    }


def _resolve_config_path(path: Path | None) -> Path | None:
    if path is None:
        candidate_paths = [Path(name) for name in CONFIG_FILE_NAMES]
    elif path.is_dir():
        candidate_paths = [path / name for name in CONFIG_FILE_NAMES]
    else:
        candidate_paths = [path]

    for candidate in candidate_paths:
        if candidate.exists():
            return candidate
    return None


def _load_toml(path: Path) -> dict[str, Any]:
    with path.open("rb") as handle:
        data = tomllib.load(handle)
    if path.name == "pyproject.toml":
        tool_config = data.get("tool", {}).get("tmux_runner", {})
        if not isinstance(tool_config, dict):
            raise ValueError("tool.tmux_runner must be a mapping.")
        return tool_config
    return data


def _load_yaml(path: Path) -> dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        data = None
    if data is not None:
        if not isinstance(data, dict):
            raise ValueError("YAML configuration must be a mapping.")
        return data
    try:
        import yaml  # type: ignore[import-untyped]
    except ImportError as exc:
        raise RuntimeError(
            "PyYAML is required to parse non-JSON YAML configuration files."
        ) from exc
    parsed = yaml.safe_load(text)
    if parsed is None:
        return {}
    if not isinstance(parsed, dict):
        raise ValueError("YAML configuration must be a mapping.")
    return parsed


def _parse_runner_config(raw: Any) -> RunnerConfig:
    if not isinstance(raw, dict):
        return RunnerConfig()
    defaults = RunnerConfig()
    socket_path = (
        _optional_str(raw["socket_path"]) if "socket_path" in raw else defaults.socket_path
    )
    timeout_s = (
        _optional_timeout(raw["timeout_s"]) if "timeout_s" in raw else defaults.timeout_s
    )
    return RunnerConfig(
        socket_path=socket_path,
        window_prefix=str(raw.get("window_prefix", defaults.window_prefix)),
        timeout_s=timeout_s,
        poll_interval_s=float(raw.get("poll_interval_s", defaults.poll_interval_s)),
        settle_delay_s=float(raw.get("settle_delay_s", defaults.settle_delay_s)),
        debug=bool(raw.get("debug", defaults.debug)),
        log_level=str(raw.get("log_level", defaults.log_level)),
    )


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _optional_timeout(value: Any) -> float | None:
    if value is None:
        return None
    timeout = float(value)
    return timeout if timeout > 0 else None
