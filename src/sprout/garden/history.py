"""Reduce a watering event log into the current progress.

Controllers report three statuses per watering event: ``sent`` when the
command is published, ``start`` when the valve opens and ``complete`` when
it closes. Reading the log newest-first:

    sent, sent, ...   queued commands the controller has not started yet
    start             the watering in progress; stop here
    complete          the last finished watering; stop here

A completion older than the cutoff, or with nothing queued after it, is not
shown at all. A command sent before the previous watering completed should
have started already, so it is reported as ``SENT_BUT_NOT_STARTED``.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timedelta

from sprout.core.timestamps import ensure_utc, utc_now
from sprout.garden.models import (
    ProgressAnomaly,
    WaterHistory,
    WaterHistoryProgress,
    WaterStatus,
)

COMPLETED_CUTOFF = timedelta(hours=1)
_START_TOLERANCE = timedelta(seconds=1)


def calculate_progress(
    history: Sequence[WaterHistory],
    now: datetime | None = None,
    *,
    completed_cutoff: timedelta = COMPLETED_CUTOFF,
) -> WaterHistoryProgress:
    """Return the progress snapshot for ``history`` ordered newest-first."""
    now = ensure_utc(now) if now is not None else utc_now()
    queue = 0
    last_sent: WaterHistory | None = None

    for event in history:
        if event.status == WaterStatus.SENT:
            queue += 1
            last_sent = event
            continue

        if event.status == WaterStatus.STARTED:
            return _in_progress(event, now, queue)

        if event.status == WaterStatus.COMPLETED:
            completed_at = ensure_utc(event.completed_at or event.sent_at)
            if now - completed_at > completed_cutoff or queue == 0:
                return WaterHistoryProgress()

            if completed_at - ensure_utc(last_sent.sent_at) >= _START_TOLERANCE:
                return WaterHistoryProgress(queue=queue, error=ProgressAnomaly.SENT_BUT_NOT_STARTED)

            started_at = ensure_utc(event.started_at) if event.started_at else completed_at - event.duration
            return WaterHistoryProgress(
                duration=event.duration,
                elapsed=completed_at - started_at,
                progress=1.0,
                queue=queue,
            )

    return WaterHistoryProgress(queue=queue)


def _in_progress(event: WaterHistory, now: datetime, queue: int) -> WaterHistoryProgress:
    started_at = ensure_utc(event.started_at or event.sent_at)
    elapsed = now - started_at
    if elapsed > event.duration or event.duration <= timedelta(0):
        return WaterHistoryProgress(
            duration=event.duration,
            elapsed=elapsed,
            progress=0.0,
            queue=queue,
            error=ProgressAnomaly.ELAPSED_EXCEEDS_DURATION,
        )
    return WaterHistoryProgress(
        duration=event.duration,
        elapsed=elapsed,
        progress=elapsed / event.duration,
        queue=queue,
    )


__all__ = ["COMPLETED_CUTOFF", "calculate_progress"]
