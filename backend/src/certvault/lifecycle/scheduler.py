"""Rotation timers on top of APScheduler.

One job per certificate id: the job table is keyed by id and the APScheduler
job shares that id with replace_existing=True, so re-scheduling replaces and
never duplicates. Each job carries a cancellation token that in-flight
rotations poll at step boundaries.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from certvault.domain.states import FailurePolicy
from certvault.metrics import certvault_metrics

logger = logging.getLogger(__name__)


@dataclass
class RotationJob:
    """A recurring rotation registered for one certificate."""

    certificate_id: str
    interval_days: float
    next_run_at: datetime | None = None
    active: bool = True
    backoff_factor: int = 1
    consecutive_failures: int = 0
    cancel_token: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    @property
    def cancelled(self) -> bool:
        return self.cancel_token.is_set()


JobRunner = Callable[[RotationJob], Awaitable[None]]


class RotationScheduler:
    """Owns the rotation job table and the APScheduler instance driving it."""

    MISFIRE_GRACE_SECONDS = 300

    def __init__(
        self,
        time_unit_seconds: float = 86400.0,
        failure_policy: FailurePolicy = FailurePolicy.KEEP_CADENCE,
        backoff_max_factor: int = 8,
    ) -> None:
        if time_unit_seconds <= 0:
            raise ValueError("time_unit_seconds must be positive")
        self.time_unit_seconds = time_unit_seconds
        self.failure_policy = FailurePolicy(failure_policy)
        self.backoff_max_factor = max(1, backoff_max_factor)
        self._scheduler: AsyncIOScheduler | None = None
        self._jobs: dict[str, RotationJob] = {}
        self._runners: dict[str, JobRunner] = {}
        self._inflight: set[asyncio.Task[None]] = set()

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    async def start(self) -> None:
        """Start the scheduler on the running event loop."""
        if self.running:
            return
        self._scheduler = AsyncIOScheduler(event_loop=asyncio.get_running_loop())
        self._scheduler.start()
        logger.info(
            "rotation_scheduler_started",
            extra={
                "time_unit_seconds": self.time_unit_seconds,
                "failure_policy": self.failure_policy.value,
            },
        )

    async def stop(self) -> None:
        """Stop every timer, then wait for in-flight rotations to stand down.

        Rotations observe their cancellation token at the next step boundary.
        """
        for job in self._jobs.values():
            job.cancel_token.set()
            if job.active:
                job.active = False
                certvault_metrics.record_rotation_job_removed()
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None

        current = asyncio.current_task()
        pending = [task for task in self._inflight if task is not current]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        logger.info(
            "rotation_scheduler_stopped",
            extra={"jobs": len(self._jobs), "drained_rotations": len(pending)},
        )

    def schedule(self, certificate_id: str, interval_days: float, runner: JobRunner) -> RotationJob:
        """Register (or replace) the rotation job for certificate_id.

        Raises:
            ValueError: If interval_days is not positive.
            RuntimeError: If the scheduler has not been started.
        """
        if interval_days <= 0:
            raise ValueError("interval_days must be positive")
        if self._scheduler is None or not self._scheduler.running:
            raise RuntimeError("Rotation scheduler is not running")

        previous = self._jobs.get(certificate_id)
        replaced = previous is not None
        job = RotationJob(certificate_id=certificate_id, interval_days=interval_days)
        self._jobs[certificate_id] = job
        self._runners[certificate_id] = runner

        aps_job = self._scheduler.add_job(
            self._fire,
            trigger=IntervalTrigger(seconds=self._interval_seconds(job)),
            args=[certificate_id],
            id=certificate_id,
            name=f"rotation:{certificate_id}",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=self.MISFIRE_GRACE_SECONDS,
            replace_existing=True,
        )
        job.next_run_at = aps_job.next_run_time

        if previous is not None:
            # A rotation still running under the old job stops at its next step
            previous.cancel_token.set()
        if previous is not None and previous.active:
            previous.active = False
        else:
            certvault_metrics.record_rotation_job_added()

        logger.info(
            "rotation_scheduled",
            extra={
                "certificate_id": certificate_id,
                "interval_days": interval_days,
                "replaced": replaced,
                "next_run_at": job.next_run_at.isoformat() if job.next_run_at else None,
            },
        )
        return job

    def cancel(self, certificate_id: str) -> bool:
        """Remove the job for certificate_id and cancel any rotation it has in flight."""
        job = self._jobs.pop(certificate_id, None)
        self._runners.pop(certificate_id, None)
        if job is None:
            return False

        job.cancel_token.set()
        self._remove_aps_job(certificate_id)
        if job.active:
            job.active = False
            certvault_metrics.record_rotation_job_removed()
        logger.info("rotation_cancelled", extra={"certificate_id": certificate_id})
        return True

    def transfer(self, old_certificate_id: str, new_certificate_id: str) -> RotationJob | None:
        """Move a job to a successor certificate on the same cadence.

        The old job's token is left untouched so the rotation that called this
        can finish normally.
        """
        job = self._jobs.pop(old_certificate_id, None)
        runner = self._runners.pop(old_certificate_id, None)
        if job is None or runner is None:
            return None

        self._remove_aps_job(old_certificate_id)
        if job.active:
            job.active = False
            certvault_metrics.record_rotation_job_removed()
        if job.cancelled or not self.running:
            return None

        successor = self.schedule(new_certificate_id, job.interval_days, runner)
        logger.info(
            "rotation_job_transferred",
            extra={
                "from_certificate_id": old_certificate_id,
                "to_certificate_id": new_certificate_id,
            },
        )
        return successor

    def get(self, certificate_id: str) -> RotationJob | None:
        return self._jobs.get(certificate_id)

    def jobs(self) -> list[RotationJob]:
        return sorted(self._jobs.values(), key=lambda job: job.certificate_id)

    def record_result(self, certificate_id: str, succeeded: bool) -> None:
        """Apply the failure policy after a timer-driven rotation attempt."""
        job = self._jobs.get(certificate_id)
        if job is None:
            return

        if succeeded:
            job.consecutive_failures = 0
            if job.backoff_factor != 1:
                job.backoff_factor = 1
                self._reschedule(job)
            return

        job.consecutive_failures += 1
        if self.failure_policy is FailurePolicy.BACKOFF:
            factor = min(job.backoff_factor * 2, self.backoff_max_factor)
            if factor != job.backoff_factor:
                job.backoff_factor = factor
                self._reschedule(job)
                logger.warning(
                    "rotation_backoff_applied",
                    extra={"certificate_id": certificate_id, "backoff_factor": factor},
                )

    async def _fire(self, certificate_id: str) -> None:
        job = self._jobs.get(certificate_id)
        runner = self._runners.get(certificate_id)
        if job is None or runner is None or job.cancelled:
            return

        if self._scheduler is not None:
            aps_job = self._scheduler.get_job(certificate_id)
            if aps_job is not None:
                job.next_run_at = aps_job.next_run_time

        # Executor shutdown cancels job tasks; rotations only stop at step boundaries
        task = asyncio.create_task(runner(job), name=f"rotation:{certificate_id}")
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        await asyncio.shield(task)

    def _interval_seconds(self, job: RotationJob) -> float:
        return job.interval_days * self.time_unit_seconds * job.backoff_factor

    def _reschedule(self, job: RotationJob) -> None:
        if self._scheduler is None or self._jobs.get(job.certificate_id) is not job:
            return
        aps_job = self._scheduler.reschedule_job(
            job.certificate_id, trigger=IntervalTrigger(seconds=self._interval_seconds(job))
        )
        job.next_run_at = aps_job.next_run_time

    def _remove_aps_job(self, certificate_id: str) -> None:
        if self._scheduler is None:
            return
        try:
            self._scheduler.remove_job(certificate_id)
        except JobLookupError:
            pass
