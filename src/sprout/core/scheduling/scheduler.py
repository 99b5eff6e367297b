"""Recurring job scheduler keyed by resource identifiers.

┌──────────────────────────────────────────────────────────────────────────────┐
│  JOB SCHEDULER                                                               │
│                                                                              │
│   request threads                    scheduling thread (daemon)              │
│   ───────────────                    ──────────────────────────              │
│   schedule(tag, ...) ──┐             while not stopping:                     │
│   remove_by_tag(tag) ──┼──► _jobs ◄──   dispatch every due, idle job         │
│   next_run(tag)     ───┘   (one lock)   wait(until earliest next_run)        │
│                                               │                              │
│                                               ▼                              │
│                                        ThreadPoolExecutor                    │
│                                        job.action()  (may block on I/O)      │
│                                        on return: running=False, notify      │
│                                                                              │
│  - A job never overlaps itself: while it is running the loop skips it, so a  │
│    slow action delays the next fire instead of duplicating it.               │
│  - A failing action is logged and counted; other jobs keep firing.           │
│  - stop() clears every job; fires already on a worker finish on their own.   │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from sprout.core.errors import InvalidConfigError
from sprout.core.logging import get_logger
from sprout.core.timestamps import ensure_utc, utc_now
from sprout.observability.metrics import SchedulerMetrics

from .job import Job, JobAction

if TYPE_CHECKING:
    from sprout.core.settings import SproutSettings

logger = get_logger(__name__)

# Upper bound on a single wait so wall-clock jumps are noticed.
_MAX_WAIT_SECONDS = 1.0


class JobScheduler:
    """Registry of independently firing recurring timers.

    Example:
        >>> scheduler = JobScheduler()
        >>> scheduler.start()
        >>> scheduler.schedule("01HX...", timedelta(hours=24), first_run, water)
        >>> scheduler.next_run("01HX...")
        datetime.datetime(...)
        >>> scheduler.stop()
    """

    name = "thread"

    def __init__(
        self,
        *,
        max_workers: int = 8,
        stop_timeout_seconds: float = 5.0,
        clock: Callable[[], datetime] = utc_now,
        metrics: SchedulerMetrics | None = None,
    ) -> None:
        self._cond = threading.Condition(threading.RLock())
        self._jobs: dict[str, Job] = {}
        self._max_workers = max_workers
        self._stop_timeout = stop_timeout_seconds
        self._clock = clock
        self._metrics = metrics or SchedulerMetrics()

        self._thread: threading.Thread | None = None
        self._executor: ThreadPoolExecutor | None = None
        self._started = False
        self._stopping = False
        self._generation = 0

        self._fire_count = 0
        self._error_count = 0
        self._last_fire: datetime | None = None

    @classmethod
    def from_settings(cls, settings: SproutSettings, **kwargs: Any) -> JobScheduler:
        return cls(
            max_workers=settings.scheduler_max_workers,
            stop_timeout_seconds=settings.scheduler_stop_timeout_seconds,
            **kwargs,
        )

    # ── Registration ─────────────────────────────────────────────

    def schedule(
        self,
        tag: str,
        interval: timedelta,
        first_run_at: datetime,
        action: JobAction,
        *,
        tags: Iterable[str] = (),
        job_type: str = "job",
        max_runs: int | None = None,
    ) -> Job:
        """Register a timer that fires at ``first_run_at`` and every ``interval`` after.

        A ``first_run_at`` in the past fires as soon as the loop sees it and
        then continues on the interval boundary.

        Raises:
            InvalidConfigError: If ``interval`` is not positive or
                ``max_runs`` is less than one.
        """
        if interval <= timedelta(0):
            raise InvalidConfigError("interval", interval, "interval must be positive")
        if max_runs is not None and max_runs < 1:
            raise InvalidConfigError("max_runs", max_runs, "max_runs must be at least 1")

        job = Job(
            tag=tag,
            interval=interval,
            next_run=ensure_utc(first_run_at),
            action=action,
            tags=frozenset(tags),
            job_type=job_type,
            max_runs=max_runs,
        )
        with self._cond:
            self._jobs[job.id] = job
            self._cond.notify_all()
        self._metrics.job_added(job_type, tag)
        logger.debug(
            "scheduler.job_added",
            job_id=job.id,
            tag=tag,
            tags=sorted(job.tags),
            next_run=job.next_run.isoformat(),
            interval_seconds=interval.total_seconds(),
        )
        return job

    def remove_by_tag(self, tag: str, *tags: str) -> int:
        """Cancel every job carrying ``tag`` (and all of ``tags``).

        Unknown tags are not an error. Returns the number of jobs removed.
        """
        with self._cond:
            removed = [job for job in self._jobs.values() if job.matches(tag, tags)]
            for job in removed:
                del self._jobs[job.id]
            if removed:
                self._cond.notify_all()
        for job in removed:
            self._metrics.job_removed(job.job_type, job.tag)
        if removed:
            logger.debug("scheduler.jobs_removed", tag=tag, tags=list(tags), count=len(removed))
        return len(removed)

    def replace(
        self,
        tag: str,
        interval: timedelta,
        first_run_at: datetime,
        action: JobAction,
        *,
        tags: Iterable[str] = (),
        job_type: str = "job",
        max_runs: int | None = None,
    ) -> Job:
        """Remove the jobs addressed by ``tag`` + ``tags`` and schedule a new one.

        Both steps run under the table lock, so two concurrent resets for the
        same tags leave exactly one job (last writer wins).
        """
        tags = tuple(tags)
        if interval <= timedelta(0):
            raise InvalidConfigError("interval", interval, "interval must be positive")
        with self._cond:
            self.remove_by_tag(tag, *tags)
            return self.schedule(
                tag,
                interval,
                first_run_at,
                action,
                tags=tags,
                job_type=job_type,
                max_runs=max_runs,
            )

    # ── Queries ──────────────────────────────────────────────────

    def next_run(self, tag: str, *tags: str) -> datetime | None:
        """Earliest next fire time among jobs carrying ``tag`` (and ``tags``)."""
        with self._cond:
            times = [job.next_run for job in self._jobs.values() if job.matches(tag, tags)]
        return min(times) if times else None

    def jobs(self, tag: str | None = None, *tags: str) -> list[Job]:
        """Registered jobs, optionally filtered by tag."""
        with self._cond:
            if tag is None:
                return list(self._jobs.values())
            return [job for job in self._jobs.values() if job.matches(tag, tags)]

    def __len__(self) -> int:
        with self._cond:
            return len(self._jobs)

    # ── Lifecycle ────────────────────────────────────────────────

    def start(self) -> None:
        """Start the scheduling thread. Calling it twice is a no-op."""
        with self._cond:
            if self._started:
                logger.warning("scheduler.already_started")
                return
            self._stopping = False
            self._generation += 1
            self._executor = ThreadPoolExecutor(
                max_workers=self._max_workers, thread_name_prefix="sprout-job"
            )
            self._thread = threading.Thread(
                target=self._run_loop,
                args=(self._generation,),
                daemon=True,
                name="sprout-scheduler",
            )
            self._started = True
            self._thread.start()

    def stop(self) -> None:
        """Cancel every pending fire and stop the scheduling thread.

        Idempotent. Actions already handed to a worker are left to finish.
        """
        with self._cond:
            removed = list(self._jobs.values())
            self._jobs.clear()
            was_started = self._started
            self._stopping = True
            self._started = False
            thread, self._thread = self._thread, None
            executor, self._executor = self._executor, None
            self._cond.notify_all()

        for job in removed:
            self._metrics.job_removed(job.job_type, job.tag)

        if not was_started:
            return

        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self._stop_timeout)
            if thread.is_alive():
                logger.warning("scheduler.stop_timeout", timeout_seconds=self._stop_timeout)
        if executor is not None:
            executor.shutdown(wait=False, cancel_futures=True)
        logger.info("scheduler.stopped", cancelled_jobs=len(removed))

    @property
    def is_running(self) -> bool:
        return self._started and self._thread is not None and self._thread.is_alive()

    def health(self) -> dict[str, Any]:
        """Return scheduler health status."""
        with self._cond:
            job_count = len(self._jobs)
            running = sum(1 for job in self._jobs.values() if job.running)
        return {
            "healthy": self.is_running,
            "backend": self.name,
            "jobs": job_count,
            "running_jobs": running,
            "fire_count": self._fire_count,
            "error_count": self._error_count,
            "last_fire": self._last_fire.isoformat() if self._last_fire else None,
        }

    # ── Internals ────────────────────────────────────────────────

    def _run_loop(self, generation: int) -> None:
        logger.info("scheduler.started", max_workers=self._max_workers)
        with self._cond:
            while not self._stopping and generation == self._generation:
                now = self._clock()
                due = sorted(
                    (job for job in self._jobs.values() if not job.running and job.next_run <= now),
                    key=lambda job: job.next_run,
                )
                for job in due:
                    self._dispatch(job, now)

                pending = [job.next_run for job in self._jobs.values() if not job.running]
                timeout = _MAX_WAIT_SECONDS
                if pending:
                    until_next = (min(pending) - self._clock()).total_seconds()
                    timeout = max(0.0, min(until_next, _MAX_WAIT_SECONDS))
                self._cond.wait(timeout=timeout)

    def _dispatch(self, job: Job, now: datetime) -> None:
        """Hand ``job`` to a worker. Caller holds the lock."""
        scheduled_at = job.next_run
        job.running = True
        job.run_count += 1
        job.last_run = scheduled_at
        job.next_run = job.advance(now)
        if job.exhausted:
            del self._jobs[job.id]
            self._metrics.job_removed(job.job_type, job.tag)

        self._fire_count += 1
        self._last_fire = now
        assert self._executor is not None
        self._executor.submit(self._execute, job, scheduled_at)

    def _execute(self, job: Job, scheduled_at: datetime) -> None:
        try:
            job.action()
        except Exception:
            with self._cond:
                self._error_count += 1
            self._metrics.job_failed(job.job_type, job.tag)
            logger.exception(
                "scheduler.job_failed",
                job_id=job.id,
                tag=job.tag,
                tags=sorted(job.tags),
                scheduled_at=scheduled_at.isoformat(),
            )
        finally:
            with self._cond:
                job.running = False
                self._cond.notify_all()


__all__ = ["JobScheduler"]
