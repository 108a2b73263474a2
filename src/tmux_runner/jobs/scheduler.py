"""Non-blocking job semantics on top of a blocking command runner."""

from __future__ import annotations

import threading
import time
import uuid
from collections.abc import Sequence
from typing import Any

from tmux_runner.execution.base import (
    DEFAULT_TIMEOUT_S,
    DEFAULT_WINDOW_PREFIX,
    PARSE_FAILURE_EXIT_CODE,
    CommandRunner,
    CommandSpec,
    RunCancelledError,
    RunResult,
    as_command_spec,
)
from tmux_runner.execution.runner import TmuxRunner
from tmux_runner.jobs.registry import Job, JobRegistry, JobRegistryError, JobStatus
from tmux_runner.util.logging import get_logger
from tmux_runner.util.observability import (
    ObservabilityManager,
    create_observability_manager,
)

CANCELLED_MESSAGE = "Job cancelled"


class JobScheduler:
    """Start commands in the background and collect their results.

    Each job runs on its own daemon thread that performs the whole blocking
    run. The job table is owned by the scheduler and guarded by one lock.
    Jobs stay in the table until :meth:`cleanup_job` removes them.
    """

    def __init__(
        self,
        runner: CommandRunner | None = None,
        *,
        observability: ObservabilityManager | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            runner: Blocking runner used by every job; defaults to a TmuxRunner
                on the current session.
            observability: Sink for job lifecycle events; shared with the default
                runner and created when omitted.
        """

        self._observability = observability or create_observability_manager()
        self._runner = runner or TmuxRunner(observability=self._observability)
        self._registry = JobRegistry()
        self._logger = get_logger(self.__class__.__name__)

    @property
    def runner(self) -> CommandRunner:
        """Return the runner jobs are executed with."""

        return self._runner

    @property
    def observability(self) -> ObservabilityManager:
        """Return the manager receiving job lifecycle events."""

        return self._observability

    def run(
        self,
        command: str | Sequence[str] | CommandSpec,
        *,
        window_prefix: str = DEFAULT_WINDOW_PREFIX,
        timeout_s: float | None = DEFAULT_TIMEOUT_S,
    ) -> RunResult:
        """Run a command synchronously without creating a job."""

        return self._runner.run(command, window_prefix=window_prefix, timeout_s=timeout_s)

    def start(
        self,
        command: str | Sequence[str] | CommandSpec,
        *,
        window_prefix: str = DEFAULT_WINDOW_PREFIX,
        timeout_s: float | None = DEFAULT_TIMEOUT_S,
    ) -> str:
        """Start a command in the background.

        Args:
            command: Shell string, argument vector or command spec.
            window_prefix: Prefix of the window created for the run.
            timeout_s: Polling ceiling in seconds; ``None`` or ``0`` waits forever.

        Returns:
            Identifier of the new job, already registered as running.
        """

        job = Job(
            job_id=_new_job_id(),
            command=as_command_spec(command),
            window_prefix=window_prefix,
            timeout_s=timeout_s,
        )
        job.thread = threading.Thread(
            target=self._execute,
            args=(job,),
            name=f"tmux-runner-{job.job_id}",
            daemon=True,
        )
        self._registry.register(job)
        self._log_event(
            "job.started",
            {
                "job_id": job.job_id,
                "command": job.command.render(),
                "window_prefix": window_prefix,
            },
        )
        job.thread.start()
        return job.job_id

    def is_finished(self, job_id: str) -> bool:
        """Return True if the job reached a terminal state; False if unknown."""

        return self._registry.inspect(job_id, lambda job: job.status.is_terminal, False)

    def is_running(self, job_id: str) -> bool:
        """Return True if the job is still running; False if unknown."""

        return self._registry.inspect(
            job_id, lambda job: job.status is JobStatus.RUNNING, False
        )

    def status(self, job_id: str) -> JobStatus | None:
        """Return the job's status, or None if it is unknown."""

        return self._registry.inspect(job_id, lambda job: job.status, None)

    def result(self, job_id: str) -> RunResult | None:
        """Return the job's result without blocking.

        Returns:
            The result once the job is terminal, otherwise None (also for
            unknown ids).
        """

        return self._registry.inspect(
            job_id,
            lambda job: job.result if job.status.is_terminal else None,
            None,
        )

    def wait(self, job_id: str) -> RunResult:
        """Block until the job finishes and return its result.

        Raises:
            JobNotFoundError: If the job id is unknown.
            Exception: The infrastructure error a failed job raised.
        """

        job = self._registry.get(job_id)
        return self._collect(job, reraise=True)

    def wait_all(self) -> dict[str, RunResult]:
        """Wait for every job not yet collected and return their results.

        Jobs that finished before the call are included. Failed jobs contribute
        their stored result instead of raising. A job handed out here or by
        :meth:`wait` is not returned again.
        """

        with self._registry.locked() as jobs:
            pending = [job for job in jobs.values() if not job.collected]
            for job in pending:
                job.collected = True

        return {job.job_id: self._collect(job, reraise=False) for job in pending}

    def cancel(self, job_id: str) -> bool:
        """Cancel a running job.

        The worker stops at its next poll; the tmux window and whatever runs in
        it are left as they are.

        Returns:
            True if the job was running and is now cancelled.
        """

        with self._registry.locked() as jobs:
            job = jobs.get(job_id)
            if job is None or job.status is not JobStatus.RUNNING:
                return False
            job.cancel_event.set()
            _mark_cancelled(job)

        self._log_event("job.cancelled", {"job_id": job_id}, level="WARNING")
        return True

    def cleanup_job(self, job_id: str) -> bool:
        """Remove a job from the table, whatever its state.

        Returns:
            True if the job existed.
        """

        return self._registry.remove(job_id) is not None

    def jobs(self) -> list[str]:
        """Return all job ids in start order."""

        return self._registry.ids()

    def running_jobs(self) -> list[str]:
        """Return the ids of jobs that are still running."""

        return self._registry.ids(lambda job: job.status is JobStatus.RUNNING)

    def _execute(self, job: Job) -> None:
        try:
            result = self._runner.run(
                job.command,
                window_prefix=job.window_prefix,
                timeout_s=job.timeout_s,
                cancel_event=job.cancel_event,
            )
        except RunCancelledError:
            self._logger.debug("Job %s stopped after cancellation", job.job_id)
            with self._registry.locked():
                if job.status is JobStatus.RUNNING:
                    _mark_cancelled(job)
            return
        except Exception as exc:
            self._logger.error("Job %s failed: %s", job.job_id, exc)
            with self._registry.locked():
                if job.status is not JobStatus.RUNNING:
                    return
                job.exception = exc
                job.status = JobStatus.FAILED
                job.finished_at = time.time()
                job.result = RunResult(
                    output="",
                    exit_code=PARSE_FAILURE_EXIT_CODE,
                    error=str(exc),
                    duration_s=job.finished_at - job.started_at,
                )
            self._log_event(
                "job.failed", {"job_id": job.job_id, "error": str(exc)}, level="ERROR"
            )
            return

        with self._registry.locked():
            if job.status is not JobStatus.RUNNING:
                return
            job.result = result
            job.status = JobStatus.COMPLETED
            job.finished_at = time.time()
        self._log_event(
            "job.completed",
            {
                "job_id": job.job_id,
                "exit_code": result.exit_code,
                "duration_s": round(result.duration_s, 3),
            },
        )

    def _collect(self, job: Job, *, reraise: bool) -> RunResult:
        with self._registry.locked():
            cancelled = job.status is JobStatus.CANCELLED
        if not cancelled and job.thread is not None:
            job.thread.join()

        with self._registry.locked():
            job.collected = True
            if reraise and job.exception is not None:
                raise job.exception
            if job.result is None:
                raise JobRegistryError(f"Job '{job.job_id}' finished without a result")
            return job.result

    def _log_event(self, event_type: str, payload: dict[str, Any], *, level: str = "INFO") -> None:
        self._observability.log_event(event_type, payload, level=level)


def _mark_cancelled(job: Job) -> None:
    job.status = JobStatus.CANCELLED
    job.finished_at = time.time()
    job.result = RunResult(
        output="",
        exit_code=PARSE_FAILURE_EXIT_CODE,
        error=CANCELLED_MESSAGE,
        duration_s=job.finished_at - job.started_at,
    )


def _new_job_id() -> str:
    return f"job_{int(time.time())}_{uuid.uuid4().hex[:8]}"
