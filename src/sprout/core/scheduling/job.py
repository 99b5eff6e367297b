"""Job model for the recurring job scheduler."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sprout.core.timestamps import generate_ulid

JobAction = Callable[[], Any]


@dataclass(eq=False)
class Job:
    """One recurring timer.

    ``tag`` is the resource identifier the job belongs to. ``tags`` holds
    the tag plus any role tags (``ON``, ``OFF``, ``ADHOC`` ...) so callers
    can address a single role of a resource.

    Mutable fields are only touched while the owning scheduler's lock is
    held.
    """

    tag: str
    interval: timedelta
    next_run: datetime
    action: JobAction = field(repr=False)
    tags: frozenset[str] = frozenset()
    job_type: str = "job"
    max_runs: int | None = None
    id: str = field(default_factory=generate_ulid)
    run_count: int = 0
    last_run: datetime | None = None
    running: bool = False

    def __post_init__(self) -> None:
        self.tags = frozenset(self.tags) | {self.tag}

    def matches(self, tag: str, extra: tuple[str, ...] = ()) -> bool:
        """True when the job carries ``tag`` and every tag in ``extra``."""
        return tag in self.tags and self.tags.issuperset(extra)

    @property
    def exhausted(self) -> bool:
        return self.max_runs is not None and self.run_count >= self.max_runs

    def advance(self, now: datetime) -> datetime:
        """Return the first interval boundary after ``now`` on this job's phase."""
        upcoming = self.next_run + self.interval
        if upcoming <= now:
            missed = (now - self.next_run) // self.interval
            upcoming = self.next_run + (missed + 1) * self.interval
        return upcoming

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "tag": self.tag,
            "tags": sorted(self.tags),
            "job_type": self.job_type,
            "interval_seconds": self.interval.total_seconds(),
            "next_run": self.next_run.isoformat(),
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "run_count": self.run_count,
            "max_runs": self.max_runs,
            "running": self.running,
        }


__all__ = ["Job", "JobAction"]
