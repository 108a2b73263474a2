from __future__ import annotations

import json
import logging
import threading
import time
from collections.abc import Sequence

import pytest

from tmux_runner.execution.base import (
    CommandRunner,
    CommandSpec,
    RunCancelledError,
    RunResult,
    as_command_spec,
)
from tmux_runner.jobs.registry import JobNotFoundError, JobStatus
from tmux_runner.jobs.scheduler import JobScheduler
from tmux_runner.util.observability import create_observability_manager


class FakeRunner(CommandRunner):
    """Runner whose commands finish when their gate opens.

    ``sleep N`` sleeps for N seconds, ``boom`` raises, ``interrupt`` stops as
    if cancelled, ``exit N`` returns N and any other command blocks until
    :meth:`release` is called for it.
    """

    def __init__(self) -> None:
        self.gates: dict[str, threading.Event] = {}
        self.calls: list[tuple[str, str, float | None]] = []
        self._lock = threading.Lock()

    def gate(self, command: str) -> threading.Event:
        with self._lock:
            return self.gates.setdefault(command, threading.Event())

    def release(self, command: str) -> None:
        self.gate(command).set()

    def run(
        self,
        command: str | Sequence[str] | CommandSpec,
        *,
        window_prefix: str = "tmux_runner",
        timeout_s: float | None = 600.0,
        cancel_event: threading.Event | None = None,
    ) -> RunResult:
        text = as_command_spec(command).render()
        with self._lock:
            self.calls.append((text, window_prefix, timeout_s))
        if text == "boom":
            raise RuntimeError("tmux server went away")
        if text == "interrupt":
            time.sleep(0.05)
            raise RunCancelledError("Run cancelled")
        if text.startswith("sleep "):
            time.sleep(float(text.split()[1]))
            return RunResult(output=text, exit_code=0)
        if text.startswith("exit "):
            return RunResult(output="", exit_code=int(text.split()[1]))

        gate = self.gate(text)
        while not gate.wait(0.01):
            if cancel_event is not None and cancel_event.is_set():
                raise RunCancelledError("cancelled")
        return RunResult(output=f"ran {text}", exit_code=0)


def _wait_until(predicate, timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached in time")
        time.sleep(0.01)


def test_start_registers_running_job_and_wait_returns_result() -> None:
    runner = FakeRunner()
    scheduler = JobScheduler(runner)

    job_id = scheduler.start("build", window_prefix="ci", timeout_s=30)

    assert job_id.startswith("job_")
    assert scheduler.is_running(job_id) is True
    assert scheduler.is_finished(job_id) is False
    assert scheduler.status(job_id) is JobStatus.RUNNING
    assert scheduler.result(job_id) is None

    runner.release("build")
    result = scheduler.wait(job_id)

    assert result.output == "ran build"
    assert result.success is True
    assert scheduler.status(job_id) is JobStatus.COMPLETED
    assert scheduler.is_finished(job_id) is True
    assert scheduler.is_running(job_id) is False
    assert scheduler.result(job_id) == result
    assert runner.calls == [("build", "ci", 30)]


def test_nonzero_exit_is_a_completed_job() -> None:
    scheduler = JobScheduler(FakeRunner())

    job_id = scheduler.start("exit 3")
    result = scheduler.wait(job_id)

    assert result.exit_code == 3
    assert scheduler.status(job_id) is JobStatus.COMPLETED


def test_unknown_job_ids() -> None:
    scheduler = JobScheduler(FakeRunner())

    with pytest.raises(JobNotFoundError, match="Unknown job ID"):
        scheduler.wait("job_missing")
    assert scheduler.status("job_missing") is None
    assert scheduler.result("job_missing") is None
    assert scheduler.is_finished("job_missing") is False
    assert scheduler.is_running("job_missing") is False
    assert scheduler.cancel("job_missing") is False


def test_infrastructure_error_marks_job_failed_and_reraises_on_wait() -> None:
    scheduler = JobScheduler(FakeRunner())

    job_id = scheduler.start("boom")
    _wait_until(lambda: scheduler.is_finished(job_id))

    assert scheduler.status(job_id) is JobStatus.FAILED
    stored = scheduler.result(job_id)
    assert stored.exit_code == -1
    assert stored.error == "tmux server went away"
    with pytest.raises(RuntimeError, match="tmux server went away"):
        scheduler.wait(job_id)


def test_wait_all_returns_failed_jobs_without_raising() -> None:
    scheduler = JobScheduler(FakeRunner())

    ok_id = scheduler.start("exit 0")
    bad_id = scheduler.start("boom")
    results = scheduler.wait_all()

    assert set(results) == {ok_id, bad_id}
    assert results[ok_id].success is True
    assert results[bad_id].exit_code == -1


def test_wait_all_includes_jobs_that_already_finished() -> None:
    scheduler = JobScheduler(FakeRunner())

    job_ids = [scheduler.start(f"exit {code}") for code in range(5)]
    _wait_until(lambda: all(scheduler.is_finished(job_id) for job_id in job_ids))

    results = scheduler.wait_all()

    assert list(results) == job_ids
    assert [results[job_id].exit_code for job_id in job_ids] == [0, 1, 2, 3, 4]
    assert scheduler.wait_all() == {}


def test_wait_all_skips_jobs_collected_by_wait() -> None:
    scheduler = JobScheduler(FakeRunner())

    first = scheduler.start("exit 0")
    second = scheduler.start("exit 0")
    scheduler.wait(first)

    assert list(scheduler.wait_all()) == [second]


def test_wait_all_picks_up_jobs_started_later() -> None:
    scheduler = JobScheduler(FakeRunner())

    scheduler.start("exit 0")
    assert len(scheduler.wait_all()) == 1

    later = scheduler.start("exit 1")
    assert list(scheduler.wait_all()) == [later]


def test_jobs_run_concurrently() -> None:
    scheduler = JobScheduler(FakeRunner())

    started = time.monotonic()
    job_ids = [scheduler.start(f"sleep {delay}") for delay in (0.1, 0.2, 0.3)]
    results = scheduler.wait_all()
    elapsed = time.monotonic() - started

    assert len(results) == 3
    assert all(result.success for result in results.values())
    assert all(scheduler.is_finished(job_id) for job_id in job_ids)
    assert elapsed < 0.55


def test_cancel_running_job() -> None:
    runner = FakeRunner()
    scheduler = JobScheduler(runner)

    job_id = scheduler.start("forever")

    assert scheduler.cancel(job_id) is True
    assert scheduler.status(job_id) is JobStatus.CANCELLED
    assert scheduler.is_running(job_id) is False
    assert scheduler.is_finished(job_id) is True
    assert scheduler.cancel(job_id) is False

    result = scheduler.wait(job_id)
    assert result.exit_code == -1
    assert result.error == "Job cancelled"


def test_cancelled_job_keeps_cancelled_status_after_worker_stops() -> None:
    runner = FakeRunner()
    scheduler = JobScheduler(runner)
    job_id = scheduler.start("forever")
    scheduler.cancel(job_id)

    runner.release("forever")
    time.sleep(0.05)

    assert scheduler.status(job_id) is JobStatus.CANCELLED
    assert scheduler.result(job_id).error == "Job cancelled"


def test_cancel_finished_job_is_a_no_op() -> None:
    scheduler = JobScheduler(FakeRunner())
    job_id = scheduler.start("exit 0")
    scheduler.wait(job_id)

    assert scheduler.cancel(job_id) is False
    assert scheduler.status(job_id) is JobStatus.COMPLETED


def test_job_listing_and_cleanup() -> None:
    runner = FakeRunner()
    scheduler = JobScheduler(runner)

    done = scheduler.start("exit 0")
    pending = scheduler.start("hold")
    scheduler.wait(done)

    assert scheduler.jobs() == [done, pending]
    assert scheduler.running_jobs() == [pending]

    assert scheduler.cleanup_job(done) is True
    assert scheduler.cleanup_job(done) is False
    assert scheduler.jobs() == [pending]
    assert scheduler.status(done) is None

    runner.release("hold")
    assert scheduler.wait(pending).success is True


def test_synchronous_run_bypasses_job_table() -> None:
    scheduler = JobScheduler(FakeRunner())

    result = scheduler.run("exit 0")

    assert result.success is True
    assert scheduler.jobs() == []


def test_lifecycle_events_are_logged(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO, logger="tmux_runner.events")
    scheduler = JobScheduler(FakeRunner(), observability=create_observability_manager())

    job_id = scheduler.start("exit 0")
    scheduler.wait(job_id)

    events = [json.loads(record.message) for record in caplog.records if record.name == "tmux_runner.events"]
    assert [event["event_type"] for event in events] == ["job.started", "job.completed"]
    assert events[0]["payload"]["job_id"] == job_id
    assert events[1]["payload"]["exit_code"] == 0


def test_cancellation_raised_by_runner_records_duration() -> None:
    scheduler = JobScheduler(FakeRunner())

    job_id = scheduler.start("interrupt")
    _wait_until(lambda: scheduler.is_finished(job_id))

    assert scheduler.status(job_id) is JobStatus.CANCELLED
    result = scheduler.wait(job_id)
    assert result.error == "Job cancelled"
    assert result.duration_s >= 0.04


def test_cancel_records_duration() -> None:
    scheduler = JobScheduler(FakeRunner())
    job_id = scheduler.start("forever")
    time.sleep(0.05)

    scheduler.cancel(job_id)

    assert scheduler.result(job_id).duration_s >= 0.04
