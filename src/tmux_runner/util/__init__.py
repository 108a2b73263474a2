"""Utility helpers package."""

from tmux_runner.util.logging import configure_logging, get_logger
from tmux_runner.util.observability import (
    EventLogger,
    MetricsCollector,
    ObservabilityManager,
    create_observability_manager,
)

__all__ = [
    "EventLogger",
    "MetricsCollector",
    "ObservabilityManager",
    "configure_logging",
    "create_observability_manager",
    "get_logger",
]
