"""
Water schedule engine.

Manifesto:
    A water schedule is a duration repeated every interval, phase-anchored
    at its start time. The engine keeps exactly one scheduler job per
    schedule and, when the job fires, works out how long to water right now:
    the configured duration scaled by recent rain and temperature. Weather
    trouble never cancels a watering; it only loses the adjustment.

Architecture:
    ::

        schedule_water_action(ws)
            │ end-dated?  ──► remove job, done
            ▼
        scheduler.replace(ws.id, ws.interval, next aligned start, fire)

        fire (worker thread)
            │ reload ws from store (if any)
            │ end-dated?        ──► remove job
            │ outside period?   ──► skip this fire
            ▼
        compute_effective_duration(ws)
            duration × temperature.scale(avg high)
                     × rain.inverted_scale_down_only(total rain)
            │ 0?  ──► skip
            ▼
        for each zone listing ws.id in water_schedule_ids
            │ skip_count > 0?  ──► decrement, save, skip zone
            ▼
        dispatcher.send_water_action(zone.id, duration)

    Without a zone store the schedule id itself is the dispatch target.

Tags:
    watering, scheduling, weather, scaling
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sprout.core.errors import DispatchError, SproutError, WeatherDataError
from sprout.core.logging import LogContext, get_logger
from sprout.core.scheduling import JobScheduler
from sprout.core.timestamps import ensure_utc, utc_now
from sprout.garden.models import WaterSchedule, Zone
from sprout.garden.protocols import ActionDispatcher, RecordStore
from sprout.garden.weather.client import WeatherClient
from sprout.observability.metrics import SchedulerMetrics

logger = get_logger(__name__)

JOB_TYPE = "water"

# How far ahead get_next_water_time looks for a fire inside the active period.
_ACTIVE_PERIOD_LOOKAHEAD = timedelta(days=366)


@dataclass
class WeatherData:
    """Weather readings used to scale one water schedule, for display."""

    rain_mm: float | None = None
    rain_scale_factor: float | None = None
    average_high_temperature: float | None = None
    temperature_scale_factor: float | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def scale_factor(self) -> float:
        factor = 1.0
        if self.temperature_scale_factor is not None:
            factor *= self.temperature_scale_factor
        if self.rain_scale_factor is not None:
            factor *= self.rain_scale_factor
        return factor


@dataclass
class EffectiveDuration:
    """Duration to water right now and how it was reached."""

    duration: timedelta
    base_duration: timedelta
    scale_factor: float = 1.0
    weather: WeatherData | None = None

    @property
    def warnings(self) -> list[str]:
        return self.weather.warnings if self.weather else []

    @property
    def skip(self) -> bool:
        return self.duration <= timedelta(0)


def next_aligned_time(anchor: datetime, interval: timedelta, now: datetime) -> datetime:
    """First ``anchor + k * interval`` (k >= 0) that is not in the past.

    A schedule whose start time has passed resumes on its phase instead of
    firing immediately, so restarts do not trigger an extra watering.
    """
    anchor = ensure_utc(anchor)
    now = ensure_utc(now)
    if anchor >= now:
        return anchor
    periods = (now - anchor) // interval
    candidate = anchor + periods * interval
    if candidate < now:
        candidate += interval
    return candidate


class WaterScheduleEngine:
    """Keeps one scheduler job per active water schedule.

    Args:
        scheduler: Scheduler that owns the jobs.
        dispatcher: Publishes water and stop commands.
        weather_clients: Weather clients keyed by id, referenced by
            ``ScaleControl.client_id``.
        water_schedules: Optional store; fires reload the schedule from it.
        zones: Optional store; fires water every zone using the schedule.
        metrics: Counts per-zone dispatch failures.
        clock: Source of "now".
    """

    def __init__(
        self,
        scheduler: JobScheduler,
        dispatcher: ActionDispatcher,
        *,
        weather_clients: Mapping[str, WeatherClient] | None = None,
        water_schedules: RecordStore[WaterSchedule] | None = None,
        zones: RecordStore[Zone] | None = None,
        clock: Callable[[], datetime] = utc_now,
        metrics: SchedulerMetrics | None = None,
    ) -> None:
        self._scheduler = scheduler
        self._dispatcher = dispatcher
        self._weather_clients = dict(weather_clients or {})
        self._water_schedules = water_schedules
        self._zones = zones
        self._clock = clock
        self._metrics = metrics or SchedulerMetrics()

    # ── Scheduling ───────────────────────────────────────────────

    def schedule_water_action(self, ws: WaterSchedule) -> datetime | None:
        """Install or replace the job for ``ws``; returns its first fire time.

        End-dated schedules have their job removed and ``None`` is returned.
        """
        ws.validate()
        now = self._clock()
        with LogContext(water_schedule_id=ws.id):
            if ws.end_dated(now):
                removed = self._scheduler.remove_by_tag(ws.id)
                logger.info("water.end_dated", removed_jobs=removed)
                return None

            first_run = next_aligned_time(ws.start_time, ws.interval, now)
            self._scheduler.replace(
                ws.id,
                ws.interval,
                first_run,
                self._water_action(ws),
                job_type=JOB_TYPE,
            )
            logger.info(
                "water.scheduled",
                next_run=first_run.isoformat(),
                interval_seconds=ws.interval.total_seconds(),
                duration_seconds=ws.duration.total_seconds(),
            )
            return first_run

    def remove_water_action(self, ws: WaterSchedule) -> int:
        return self._scheduler.remove_by_tag(ws.id)

    def reset_water_schedules(self, schedules: Iterable[WaterSchedule]) -> None:
        """Reschedule each schedule; one failure does not stop the rest."""
        for ws in schedules:
            try:
                self.schedule_water_action(ws)
            except SproutError as err:
                logger.error("water.schedule_failed", water_schedule_id=ws.id, **err.to_dict())

    def stop_watering(self, garden_id: str, stop_all: bool = False) -> None:
        """Stop the current watering (and with ``stop_all`` the queued ones)."""
        try:
            self._dispatcher.send_stop_action(garden_id, stop_all)
        except SproutError:
            raise
        except Exception as exc:
            raise DispatchError("unable to send stop action", cause=exc).with_context(
                resource_id=garden_id, resource_type="garden"
            ) from exc
        logger.info("water.stop_sent", garden_id=garden_id, stop_all=stop_all)

    # ── Duration ─────────────────────────────────────────────────

    def compute_effective_duration(self, ws: WaterSchedule) -> EffectiveDuration:
        """The schedule's duration scaled by current weather.

        Weather lookup failures leave the affected factor at 1 and are
        reported as warnings.
        """
        if not ws.has_weather_control():
            return EffectiveDuration(duration=ws.duration, base_duration=ws.duration)

        weather = self.get_weather_data(ws)
        factor = weather.scale_factor
        duration = ws.duration * factor
        logger.info(
            "water.duration_scaled",
            water_schedule_id=ws.id,
            scale_factor=factor,
            base_seconds=ws.duration.total_seconds(),
            scaled_seconds=duration.total_seconds(),
        )
        return EffectiveDuration(
            duration=duration,
            base_duration=ws.duration,
            scale_factor=factor,
            weather=weather,
        )

    def get_weather_data(self, ws: WaterSchedule) -> WeatherData:
        """Fetch the readings ``ws``'s weather control depends on."""
        data = WeatherData()
        control = ws.weather_control
        if control is None:
            return data

        if control.rain is not None:
            try:
                rain = self._client(control.rain.client_id).get_total_rain(ws.interval)
            except Exception as exc:
                self._weather_warning(data, ws, "rain", control.rain.client_id, exc)
            else:
                data.rain_mm = rain
                data.rain_scale_factor = control.rain.inverted_scale_down_only(rain)

        if control.temperature is not None:
            try:
                temperature = self._client(control.temperature.client_id).get_average_high_temperature(
                    ws.interval
                )
            except Exception as exc:
                self._weather_warning(data, ws, "temperature", control.temperature.client_id, exc)
            else:
                data.average_high_temperature = temperature
                data.temperature_scale_factor = control.temperature.scale(temperature)

        return data

    # ── Queries ──────────────────────────────────────────────────

    def get_next_water_time(self, ws: WaterSchedule) -> datetime | None:
        """Next fire of ``ws`` that falls inside its active period."""
        next_run = self._scheduler.next_run(ws.id)
        if next_run is None or ws.active_period is None:
            return next_run

        horizon = next_run + _ACTIVE_PERIOD_LOOKAHEAD
        while next_run <= horizon:
            if ws.is_active(next_run):
                return next_run
            next_run += ws.interval
        return None

    def get_next_active_water_schedule(
        self, schedules: Iterable[WaterSchedule]
    ) -> WaterSchedule | None:
        """The schedule among ``schedules`` that will water soonest."""
        now = self._clock()
        soonest: tuple[datetime, WaterSchedule] | None = None
        for ws in schedules:
            if ws.end_dated(now):
                continue
            next_time = self.get_next_water_time(ws)
            if next_time is None:
                continue
            if soonest is None or next_time < soonest[0]:
                soonest = (next_time, ws)
        return soonest[1] if soonest else None

    def get_zones_using_water_schedule(self, ws: WaterSchedule) -> list[Zone]:
        """Zones that are not end-dated and list ``ws`` among their schedules."""
        if self._zones is None:
            return []
        now = self._clock()
        return [
            zone
            for zone in self._zones.get_all(include_end_dated=True)
            if ws.id in zone.water_schedule_ids and not zone.end_dated(now)
        ]

    # ── Internals ────────────────────────────────────────────────

    def _client(self, client_id: str | None) -> WeatherClient:
        client = self._weather_clients.get(client_id) if client_id else None
        if client is None:
            raise WeatherDataError(f"weather client not found: {client_id}").with_context(
                client_id=client_id
            )
        return client

    def _weather_warning(
        self,
        data: WeatherData,
        ws: WaterSchedule,
        kind: str,
        client_id: str | None,
        exc: Exception,
    ) -> None:
        data.warnings.append(f"unable to get {kind} data: {exc}")
        logger.warning(
            "water.weather_unavailable",
            water_schedule_id=ws.id,
            kind=kind,
            client_id=client_id,
            error=str(exc),
            error_type=type(exc).__name__,
        )

    def _water_action(self, ws: WaterSchedule) -> Callable[[], None]:
        def run() -> None:
            self._fire(ws)

        return run

    def _fire(self, scheduled: WaterSchedule) -> None:
        ws = scheduled
        if self._water_schedules is not None:
            ws = self._water_schedules.get(scheduled.id) or scheduled

        now = self._clock()
        with LogContext(water_schedule_id=ws.id):
            if ws.end_dated(now):
                logger.info("water.end_dated")
                self._scheduler.remove_by_tag(ws.id)
                return
            if not ws.is_active(now):
                logger.info("water.inactive_period")
                return

            if self._zones is None:
                effective = self.compute_effective_duration(ws)
                if effective.skip:
                    logger.info("water.skipped", reason="zero duration")
                    return
                self._send_water(ws.id, "water_schedule", effective.duration)
                return

            zones = self.get_zones_using_water_schedule(ws)
            if not zones:
                logger.info("water.no_zones")
                return

            effective = self.compute_effective_duration(ws)
            if effective.skip:
                logger.info("water.skipped", reason="zero duration")
                return

            for zone in zones:
                with LogContext(zone_id=zone.id):
                    if zone.skip_count > 0:
                        zone.skip_count -= 1
                        self._zones.set(zone)
                        logger.info("water.zone_skipped", remaining_skips=zone.skip_count)
                        continue
                    try:
                        self._send_water(zone.id, "zone", effective.duration)
                    except SproutError as err:
                        self._metrics.job_failed("zone", zone.id)
                        logger.error("water.zone_failed", **err.to_dict())

    def _send_water(self, resource_id: str, resource_type: str, duration: timedelta) -> None:
        try:
            self._dispatcher.send_water_action(resource_id, duration)
        except SproutError:
            raise
        except Exception as exc:
            raise DispatchError("unable to send water action", cause=exc).with_context(
                resource_id=resource_id, resource_type=resource_type
            ) from exc
        logger.info(
            "water.action_sent",
            resource_id=resource_id,
            duration_seconds=duration.total_seconds(),
        )


__all__ = [
    "EffectiveDuration",
    "WaterScheduleEngine",
    "WeatherData",
    "next_aligned_time",
]
