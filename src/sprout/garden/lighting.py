"""
Light cycle controller.

Manifesto:
    A garden light follows a daily cycle: ON at ``start_time``, OFF
    ``duration`` later. The controller turns that cycle into scheduler jobs
    and handles the two ways users bend it: a one-time ad-hoc ON time, and a
    request to keep the light OFF a while longer than planned.

Architecture:
    ::

        scheduler jobs for one garden (tag = garden.id)

          tags                  first run                  repeats
          ───────────────────   ────────────────────────   ────────────
          ON  + DAILY           next start_time            every 24h
          OFF + DAILY           next start_time+duration   every 24h
          ON  + ADHOC           adhoc_on_time              once

        schedule_light_delay(OFF for 30m)

          light is ON  (next OFF < next ON):   ADHOC ON at now + 30m
          light is OFF (next ON < next OFF):   ADHOC ON at next ON + 30m,
                                               DAILY ON pushed one cycle

    "Next ON" is always the earliest ON-tagged job, ad-hoc included, so two
    30m delays in one off-window add up to a 60m push.
    An ad-hoc ON must land strictly before the next OFF; one at the OFF
    instant would turn the light back on for a whole extra cycle.

Tags:
    lighting, scheduling, light-schedule, adhoc, delay
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import datetime, timedelta

from sprout.core.errors import DispatchError, LightDelayError, ScheduleError, SproutError
from sprout.core.logging import LogContext, get_logger
from sprout.core.scheduling import JobScheduler
from sprout.core.timestamps import ensure_utc, utc_now
from sprout.garden.models import (
    LIGHT_INTERVAL,
    Garden,
    LightAction,
    LightSchedule,
    LightState,
)
from sprout.garden.protocols import ActionDispatcher, RecordStore

logger = get_logger(__name__)

JOB_TYPE = "light"
DAILY_TAG = "DAILY"
ADHOC_TAG = "ADHOC"

ERR_DELAY_NOT_OFF = "unable to use delay when state is not OFF"
ERR_DELAY_TOO_LONG = "unable to execute delay that lasts longer than light_schedule"
ERR_DELAY_PAST_NEXT_OFF = "unable to schedule delay that extends past the light turning back on"


def derive_light_state(
    schedule: LightSchedule,
    now: datetime,
    pending_delay: timedelta = timedelta(0),
) -> LightState:
    """Light state implied by the daily cycle at ``now``.

    The current cycle started at the most recent ``start_time``; a pending
    delay postpones its ON period without moving its end.
    """
    now = ensure_utc(now)
    cycle_start = schedule.start_time.on_date(now)
    if cycle_start > now:
        cycle_start -= LIGHT_INTERVAL
    if cycle_start + pending_delay <= now < cycle_start + schedule.duration:
        return LightState.ON
    return LightState.OFF


class LightCycleController:
    """Installs and adjusts the light jobs of gardens.

    Args:
        scheduler: Scheduler that owns the jobs.
        dispatcher: Publishes ON/OFF commands to controllers.
        gardens: Optional store; consumed or expired ad-hoc times are
            cleared and saved through it.
        clock: Source of "now".
    """

    def __init__(
        self,
        scheduler: JobScheduler,
        dispatcher: ActionDispatcher,
        *,
        gardens: RecordStore[Garden] | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._scheduler = scheduler
        self._dispatcher = dispatcher
        self._gardens = gardens
        self._clock = clock
        self._lock = threading.RLock()
        self._pending_delays: dict[str, timedelta] = {}

    # ── Scheduling ───────────────────────────────────────────────

    def schedule_light_actions(self, garden: Garden) -> None:
        """(Re)install the daily ON/OFF jobs for ``garden``."""
        light_schedule = _light_schedule(garden)
        light_schedule.validate()
        now = self._clock()

        with LogContext(garden_id=garden.id), self._lock:
            today_on = light_schedule.start_time.on_date(now)
            on_time = today_on if today_on > now else today_on + LIGHT_INTERVAL
            off_time = today_on + light_schedule.duration - LIGHT_INTERVAL
            while off_time <= now:
                off_time += LIGHT_INTERVAL

            adhoc = light_schedule.adhoc_on_time
            if adhoc is not None and ensure_utc(adhoc) <= now:
                logger.info("light.adhoc_expired", adhoc_on_time=adhoc.isoformat())
                light_schedule.adhoc_on_time = None
                adhoc = None
                self._save(garden)

            self._scheduler.remove_by_tag(garden.id)
            if adhoc is None:
                self._pending_delays.pop(garden.id, None)

            if adhoc is not None:
                adhoc = ensure_utc(adhoc)
                if on_time < adhoc:
                    on_time += LIGHT_INTERVAL
                self._schedule_adhoc_on(garden, adhoc)

            self._scheduler.schedule(
                garden.id,
                LIGHT_INTERVAL,
                on_time,
                self._transition(garden.id, LightState.ON),
                tags=(LightState.ON.value, DAILY_TAG),
                job_type=JOB_TYPE,
            )
            self._scheduler.schedule(
                garden.id,
                LIGHT_INTERVAL,
                off_time,
                self._transition(garden.id, LightState.OFF),
                tags=(LightState.OFF.value, DAILY_TAG),
                job_type=JOB_TYPE,
            )

            logger.info(
                "light.scheduled",
                next_on=self.get_next_time(garden, LightState.ON).isoformat(),
                next_off=off_time.isoformat(),
                adhoc_on_time=adhoc.isoformat() if adhoc else None,
            )

    def schedule_light_delay(self, garden: Garden, action: LightAction) -> datetime:
        """Keep the light OFF for ``action.for_duration`` longer than scheduled.

        Returns the new next ON time.

        Raises:
            LightDelayError: A precondition failed; no job was changed.
            ScheduleError: The garden has no light jobs installed.
        """
        light_schedule = _light_schedule(garden)
        if action.state != LightState.OFF:
            raise LightDelayError(ERR_DELAY_NOT_OFF).with_context(resource_id=garden.id)
        delay = action.for_duration or timedelta(0)
        if delay > light_schedule.duration:
            raise LightDelayError(ERR_DELAY_TOO_LONG).with_context(resource_id=garden.id)
        if delay <= timedelta(0):
            raise LightDelayError("delay must be a positive duration").with_context(
                resource_id=garden.id
            )

        with LogContext(garden_id=garden.id), self._lock:
            now = self._clock()
            next_on = self._scheduler.next_run(garden.id, LightState.ON.value)
            next_off = self._scheduler.next_run(garden.id, LightState.OFF.value)
            if next_on is None or next_off is None:
                raise ScheduleError("light actions are not scheduled for garden").with_context(
                    resource_id=garden.id, resource_type="garden"
                )

            light_is_on = next_off < next_on
            adhoc = (now if light_is_on else next_on) + delay
            if adhoc >= next_off:
                raise LightDelayError(ERR_DELAY_PAST_NEXT_OFF).with_context(
                    resource_id=garden.id, next_off=next_off.isoformat()
                )

            if not light_is_on:
                self._push_daily_on_past(garden, adhoc)
            self._schedule_adhoc_on(garden, adhoc)

            pending = self._pending_delays.get(garden.id, timedelta(0)) + delay
            self._pending_delays[garden.id] = pending
            light_schedule.adhoc_on_time = adhoc
            self._save(garden)

            logger.info(
                "light.delay_scheduled",
                delay_seconds=delay.total_seconds(),
                pending_delay_seconds=pending.total_seconds(),
                next_on=adhoc.isoformat(),
            )
            return adhoc

    def execute_light_action(self, garden: Garden, action: LightAction) -> None:
        """Send ``action`` to the garden controller, scheduling its delay first."""
        if action.for_duration:
            self.schedule_light_delay(garden, action)
        self._send(garden.id, action.state, action.for_duration)

    def remove_light_actions(self, garden: Garden) -> int:
        """Remove every light job for ``garden``."""
        with self._lock:
            self._pending_delays.pop(garden.id, None)
            return self._scheduler.remove_by_tag(garden.id)

    # ── Queries ──────────────────────────────────────────────────

    def get_next_time(self, garden: Garden, state: LightState) -> datetime | None:
        """Next time the light goes to ``state``, ad-hoc ON and delays included."""
        state = LightState.parse(state)
        if state == LightState.TOGGLE:
            raise ScheduleError("next light time is only defined for ON and OFF")
        return self._scheduler.next_run(garden.id, state.value)

    def pending_delay(self, garden: Garden) -> timedelta:
        with self._lock:
            return self._pending_delays.get(garden.id, timedelta(0))

    def current_state(self, garden: Garden) -> LightState:
        """Derive whether the light is ON right now."""
        next_on = self.get_next_time(garden, LightState.ON)
        next_off = self.get_next_time(garden, LightState.OFF)
        if next_on is not None and next_off is not None:
            return LightState.ON if next_off < next_on else LightState.OFF
        return derive_light_state(_light_schedule(garden), self._clock(), self.pending_delay(garden))

    # ── Internals ────────────────────────────────────────────────

    def _push_daily_on_past(self, garden: Garden, moment: datetime) -> None:
        """Move the daily ON job to its first cycle after ``moment``."""
        daily_on = self._scheduler.next_run(garden.id, LightState.ON.value, DAILY_TAG)
        if daily_on is None or daily_on > moment:
            return
        while daily_on <= moment:
            daily_on += LIGHT_INTERVAL
        self._scheduler.replace(
            garden.id,
            LIGHT_INTERVAL,
            daily_on,
            self._transition(garden.id, LightState.ON),
            tags=(LightState.ON.value, DAILY_TAG),
            job_type=JOB_TYPE,
        )

    def _schedule_adhoc_on(self, garden: Garden, at: datetime) -> None:
        self._scheduler.replace(
            garden.id,
            LIGHT_INTERVAL,
            at,
            self._adhoc_on(garden),
            tags=(LightState.ON.value, ADHOC_TAG),
            job_type=JOB_TYPE,
            max_runs=1,
        )

    def _transition(self, garden_id: str, state: LightState) -> Callable[[], None]:
        def run() -> None:
            if state == LightState.ON:
                with self._lock:
                    self._pending_delays.pop(garden_id, None)
            self._send(garden_id, state)

        return run

    def _adhoc_on(self, garden: Garden) -> Callable[[], None]:
        def run() -> None:
            with self._lock:
                self._pending_delays.pop(garden.id, None)
                if garden.light_schedule is not None:
                    garden.light_schedule.adhoc_on_time = None
                stored = self._gardens.get(garden.id) if self._gardens is not None else None
                if stored is not None and stored.light_schedule is not None:
                    stored.light_schedule.adhoc_on_time = None
                    self._gardens.set(stored)
            logger.info("light.adhoc_consumed", garden_id=garden.id)
            self._send(garden.id, LightState.ON)

        return run

    def _send(
        self, garden_id: str, state: LightState, for_duration: timedelta | None = None
    ) -> None:
        try:
            self._dispatcher.send_light_action(garden_id, state, for_duration)
        except SproutError:
            raise
        except Exception as exc:
            raise DispatchError(f"unable to send light action {state.value}", cause=exc).with_context(
                resource_id=garden_id, resource_type="garden"
            ) from exc
        logger.info("light.action_sent", garden_id=garden_id, state=state.value)

    def _save(self, garden: Garden) -> None:
        if self._gardens is not None:
            self._gardens.set(garden)


def _light_schedule(garden: Garden) -> LightSchedule:
    if garden.light_schedule is None:
        raise ScheduleError("garden does not have a light schedule").with_context(
            resource_id=garden.id, resource_type="garden"
        )
    return garden.light_schedule


__all__ = [
    "ADHOC_TAG",
    "DAILY_TAG",
    "ERR_DELAY_NOT_OFF",
    "ERR_DELAY_PAST_NEXT_OFF",
    "ERR_DELAY_TOO_LONG",
    "LightCycleController",
    "derive_light_state",
]
