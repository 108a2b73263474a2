"""Thread-safe registry of background jobs."""

from __future__ import annotations

import enum
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TypeVar

from tmux_runner.execution.base import CommandSpec, RunResult

T = TypeVar("T")


class JobRegistryError(RuntimeError):
    """Raised when job registry operations fail."""


class JobNotFoundError(JobRegistryError):
    """Raised when a job id is not present in the registry."""


class JobStatus(str, enum.Enum):
    """Lifecycle states of a job; every state but RUNNING is terminal."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not JobStatus.RUNNING


@dataclass
class Job:
    """Bookkeeping for one background command.

    Attributes:
        job_id: Opaque identifier returned by ``start``.
        command: Command spec the job runs.
        window_prefix: Window-name prefix passed to the runner.
        timeout_s: Polling ceiling passed to the runner.
        thread: Worker thread executing the run.
        status: Current lifecycle state.
        started_at: Unix timestamp when the job was registered.
        finished_at: Unix timestamp when the job reached a terminal state.
        result: Result once terminal.
        exception: Infrastructure error raised by the worker, if any.
        collected: Whether ``wait``/``wait_all`` already handed the result out.
        cancel_event: Event the worker's run watches for cancellation.
    """

    job_id: str
    command: CommandSpec
    window_prefix: str
    timeout_s: float | None
    thread: threading.Thread | None = None
    status: JobStatus = JobStatus.RUNNING
    started_at: float = field(default_factory=time.time)
    finished_at: float | None = None
    result: RunResult | None = None
    exception: BaseException | None = None
    collected: bool = False
    cancel_event: threading.Event = field(default_factory=threading.Event)


class JobRegistry:
    """Registry of jobs guarded by a single lock.

    Every access to a job's mutable fields goes through :meth:`locked` or one of
    the helpers here, so workers and callers never observe half-updated records.
    """

    def __init__(self) -> None:
        self._jobs: dict[str, Job] = {}
        self._lock = threading.Lock()

    @contextmanager
    def locked(self) -> Iterator[dict[str, Job]]:
        """Hold the registry lock and expose the underlying table."""

        with self._lock:
            yield self._jobs

    def register(self, job: Job) -> None:
        """Add a job.

        Raises:
            JobRegistryError: If a job with the same id already exists.
        """

        with self._lock:
            if job.job_id in self._jobs:
                raise JobRegistryError(f"Job '{job.job_id}' is already registered")
            self._jobs[job.job_id] = job

    def get(self, job_id: str) -> Job:
        """Return a job by id.

        Raises:
            JobNotFoundError: If no job exists with the given id.
        """

        with self._lock:
            try:
                return self._jobs[job_id]
            except KeyError as exc:
                raise JobNotFoundError(f"Unknown job ID: {job_id}") from exc

    def find(self, job_id: str) -> Job | None:
        """Return a job by id, or None."""

        with self._lock:
            return self._jobs.get(job_id)

    def inspect(self, job_id: str, reader: Callable[[Job], T], default: T) -> T:
        """Apply ``reader`` to a job under the lock; ``default`` if it is unknown."""

        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return default
            return reader(job)

    def remove(self, job_id: str) -> Job | None:
        """Remove a job, returning it if it existed."""

        with self._lock:
            return self._jobs.pop(job_id, None)

    def ids(self, predicate: Callable[[Job], bool] | None = None) -> list[str]:
        """Return job ids in registration order, optionally filtered."""

        with self._lock:
            return [
                job_id
                for job_id, job in self._jobs.items()
                if predicate is None or predicate(job)
            ]
