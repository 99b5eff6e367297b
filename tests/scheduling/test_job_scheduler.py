"""Tests for JobScheduler."""

import threading
import time
from datetime import UTC, datetime, timedelta

import pytest

from sprout.core.errors import InvalidConfigError
from sprout.core.scheduling import Job, JobScheduler
from sprout.core.settings import SproutSettings
from sprout.core.timestamps import utc_now
from sprout.observability.metrics import SchedulerMetrics

HOUR = timedelta(hours=1)


def noop():
    pass


class TestJob:
    """Test the Job dataclass."""

    def test_primary_tag_always_in_tags(self):
        job = Job(tag="g1", interval=HOUR, next_run=datetime(2024, 1, 1, tzinfo=UTC), action=noop, tags={"ON"})
        assert job.tags == frozenset({"g1", "ON"})
        assert job.matches("g1")
        assert job.matches("g1", ("ON",))
        assert not job.matches("g1", ("OFF",))

    def test_advance_keeps_phase(self):
        """A late fire moves to the next boundary after now, not now + interval."""
        start = datetime(2024, 1, 1, 8, tzinfo=UTC)
        job = Job(tag="t", interval=HOUR, next_run=start, action=noop)
        assert job.advance(start) == start + HOUR
        assert job.advance(start + timedelta(hours=3, minutes=20)) == start + 4 * HOUR

    def test_exhausted(self):
        job = Job(tag="t", interval=HOUR, next_run=utc_now(), action=noop, max_runs=1)
        assert not job.exhausted
        job.run_count = 1
        assert job.exhausted

    def test_to_dict(self):
        job = Job(tag="t", interval=HOUR, next_run=datetime(2024, 1, 1, tzinfo=UTC), action=noop, job_type="water")
        data = job.to_dict()
        assert data["tag"] == "t"
        assert data["job_type"] == "water"
        assert data["interval_seconds"] == 3600
        assert data["last_run"] is None


class TestRegistry:
    """Job table operations that do not need the scheduling thread."""

    def test_schedule_and_next_run(self, scheduler, clock):
        """next_run reports the earliest fire for a tag."""
        first = clock() + HOUR
        scheduler.schedule("g1", timedelta(hours=24), first, noop)
        scheduler.schedule("g1", timedelta(hours=24), first + HOUR, noop)

        assert scheduler.next_run("g1") == first
        assert len(scheduler) == 2

    def test_next_run_unknown_tag_is_none(self, scheduler):
        assert scheduler.next_run("missing") is None

    def test_next_run_filters_role_tags(self, scheduler, clock):
        now = clock()
        scheduler.schedule("g1", timedelta(hours=24), now + HOUR, noop, tags=["ON"])
        scheduler.schedule("g1", timedelta(hours=24), now + 2 * HOUR, noop, tags=["OFF"])

        assert scheduler.next_run("g1", "OFF") == now + 2 * HOUR
        assert scheduler.next_run("g1", "ON") == now + HOUR

    @pytest.mark.parametrize("interval", [timedelta(0), timedelta(seconds=-5)])
    def test_non_positive_interval_rejected(self, scheduler, clock, interval):
        """A zero or negative interval never reaches the job table."""
        with pytest.raises(InvalidConfigError):
            scheduler.schedule("g1", interval, clock(), noop)
        assert len(scheduler) == 0

    def test_invalid_max_runs_rejected(self, scheduler, clock):
        with pytest.raises(InvalidConfigError):
            scheduler.schedule("g1", HOUR, clock(), noop, max_runs=0)

    def test_remove_unknown_tag_is_noop(self, scheduler):
        assert scheduler.remove_by_tag("nothing-here") == 0

    def test_remove_by_tag_and_role(self, scheduler, clock):
        now = clock()
        scheduler.schedule("g1", HOUR, now, noop, tags=["ON", "ADHOC"])
        scheduler.schedule("g1", HOUR, now, noop, tags=["ON", "DAILY"])
        scheduler.schedule("g2", HOUR, now, noop)

        assert scheduler.remove_by_tag("g1", "ADHOC") == 1
        assert [job.tags for job in scheduler.jobs("g1")] == [frozenset({"g1", "ON", "DAILY"})]
        assert scheduler.remove_by_tag("g1") == 1
        assert len(scheduler) == 1

    def test_replace_leaves_single_job(self, scheduler, clock):
        """Repeated replace calls for one tag keep exactly one job."""
        for offset in range(5):
            scheduler.replace("ws1", HOUR, clock() + offset * HOUR, noop, job_type="water")

        jobs = scheduler.jobs("ws1")
        assert len(jobs) == 1
        assert jobs[0].next_run == clock() + 4 * HOUR

    def test_concurrent_replace(self, scheduler, clock):
        """Concurrent resets of one schedule still leave one job."""
        barrier = threading.Barrier(8)

        def reset():
            barrier.wait()
            scheduler.replace("ws1", HOUR, clock(), noop)

        threads = [threading.Thread(target=reset) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(scheduler.jobs("ws1")) == 1

    def test_metrics_track_job_counts(self, clock, metrics_registry):
        metrics = SchedulerMetrics(metrics_registry)
        sched = JobScheduler(clock=clock, metrics=metrics)
        sched.schedule("g1", HOUR, clock(), noop, job_type="light")
        sched.schedule("g1", HOUR, clock(), noop, job_type="light")
        assert metrics.scheduled_jobs.value(type="light", id="g1") == 2

        sched.remove_by_tag("g1")
        assert metrics.scheduled_jobs.value(type="light", id="g1") == 0

    def test_stop_clears_jobs(self, scheduler, clock):
        scheduler.schedule("g1", HOUR, clock(), noop)
        scheduler.stop()
        assert scheduler.next_run("g1") is None
        scheduler.stop()

    def test_from_settings(self, monkeypatch):
        monkeypatch.setenv("SPROUT_SCHEDULER_MAX_WORKERS", "2")
        sched = JobScheduler.from_settings(SproutSettings(_env_file=None))
        assert sched._max_workers == 2


@pytest.mark.slow
class TestScheduling:
    """Behaviour of the scheduling thread."""

    def test_start_and_stop(self):
        sched = JobScheduler()
        sched.start()
        assert sched.is_running
        sched.stop()
        assert not sched.is_running

    def test_double_start_ignored(self, running_scheduler):
        """Double start is ignored with a warning."""
        running_scheduler.start()
        assert running_scheduler.is_running

    def test_health_before_start(self):
        health = JobScheduler().health()
        assert health["healthy"] is False
        assert health["backend"] == "thread"
        assert health["fire_count"] == 0
        assert health["last_fire"] is None

    def test_past_first_run_fires_immediately(self, running_scheduler):
        """A first fire time in the past fires right away."""
        fired = threading.Event()
        running_scheduler.schedule("g1", timedelta(hours=24), utc_now() - HOUR, fired.set)

        assert fired.wait(timeout=2)
        # Next fire stays on the original phase.
        assert running_scheduler.next_run("g1") > utc_now()

    def test_recurring_fires(self, running_scheduler):
        count = 0
        lock = threading.Lock()

        def tick():
            nonlocal count
            with lock:
                count += 1

        running_scheduler.schedule("tick", timedelta(milliseconds=100), utc_now(), tick)
        time.sleep(0.45)

        with lock:
            assert count >= 3
        assert running_scheduler.health()["fire_count"] >= 3

    def test_one_shot_job_removed_after_fire(self, running_scheduler):
        fired = threading.Event()
        running_scheduler.schedule("g1", HOUR, utc_now(), fired.set, tags=["ADHOC"], max_runs=1)

        assert fired.wait(timeout=2)
        assert running_scheduler.next_run("g1", "ADHOC") is None

    def test_failing_job_does_not_stop_others(self, running_scheduler, metrics_registry):
        """A failing action is counted and other jobs keep firing."""
        healthy = threading.Event()

        def broken():
            raise RuntimeError("controller offline")

        running_scheduler.schedule("bad", timedelta(milliseconds=50), utc_now(), broken, job_type="water")
        running_scheduler.schedule("good", timedelta(milliseconds=50), utc_now() + timedelta(milliseconds=200), healthy.set)

        assert healthy.wait(timeout=2)
        assert running_scheduler.health()["error_count"] >= 1
        errors = metrics_registry.counter("sprout_scheduler_errors")
        assert errors.value(type="water", id="bad") >= 1

    def test_job_never_overlaps_itself(self, running_scheduler):
        """A slow action delays its next fire instead of running twice at once."""
        active = 0
        max_active = 0
        lock = threading.Lock()

        def slow():
            nonlocal active, max_active
            with lock:
                active += 1
                max_active = max(max_active, active)
            time.sleep(0.2)
            with lock:
                active -= 1

        running_scheduler.schedule("slow", timedelta(milliseconds=20), utc_now(), slow)
        time.sleep(0.7)

        with lock:
            assert max_active == 1

    def test_stop_cancels_pending_fire(self):
        fired = threading.Event()
        sched = JobScheduler()
        sched.start()
        sched.schedule("g1", HOUR, utc_now() + timedelta(milliseconds=300), fired.set)
        sched.stop()

        assert not fired.wait(timeout=0.6)

    def test_removed_job_does_not_fire(self, running_scheduler):
        fired = threading.Event()
        running_scheduler.schedule("g1", HOUR, utc_now() + timedelta(milliseconds=300), fired.set)
        running_scheduler.remove_by_tag("g1")

        assert not fired.wait(timeout=0.6)
