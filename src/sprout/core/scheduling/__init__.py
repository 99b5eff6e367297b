"""Recurring job scheduling.

``JobScheduler`` owns one daemon thread that decides when jobs are due and a
worker pool that runs them. It knows nothing about gardens or water; the
light and water engines register closures against resource identifiers.
"""

from .job import Job, JobAction
from .scheduler import JobScheduler

__all__ = ["Job", "JobAction", "JobScheduler"]
