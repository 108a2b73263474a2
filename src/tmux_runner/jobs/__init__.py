"""Background jobs built on the blocking runner."""

from tmux_runner.jobs.registry import (
    Job,
    JobNotFoundError,
    JobRegistry,
    JobRegistryError,
    JobStatus,
)
from tmux_runner.jobs.scheduler import JobScheduler

__all__ = [
    "Job",
    "JobNotFoundError",
    "JobRegistry",
    "JobRegistryError",
    "JobScheduler",
    "JobStatus",
]
