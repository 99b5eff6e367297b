"""Tests for WaterScheduleEngine."""

from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest

from sprout.core.errors import DispatchError, ValidationError
from sprout.garden.models import ActivePeriod, WaterSchedule, Zone
from sprout.garden.storage import InMemoryRecordStore
from sprout.garden.watering import WaterScheduleEngine, next_aligned_time
from sprout.garden.weather import FakeWeatherClient, ScaleControl, WeatherControl
from sprout.observability.metrics import SchedulerMetrics

NOW = datetime(2024, 5, 15, 12, 0, tzinfo=UTC)
DAY = timedelta(days=1)
MIN = timedelta(minutes=1)


def make_schedule(**kwargs):
    values = {
        "duration": 30 * MIN,
        "interval": DAY,
        "start_time": datetime(2024, 5, 1, 8, 0, tzinfo=UTC),
        "name": "Morning",
    }
    values.update(kwargs)
    return WaterSchedule(**values)


def rain_control(client_id="fake"):
    return ScaleControl(baseline_value=25.4, factor=0.5, range=12.7, client_id=client_id)


def temperature_control(client_id="fake"):
    return ScaleControl(baseline_value=90, factor=0.5, range=30, client_id=client_id)


@pytest.fixture
def water_schedules():
    return InMemoryRecordStore()


@pytest.fixture
def weather_clients():
    return {"fake": FakeWeatherClient(rain_mm=31.75, rain_interval=DAY, avg_high_temperature=100)}


@pytest.fixture
def engine(scheduler, dispatcher, weather_clients, water_schedules, clock):
    return WaterScheduleEngine(
        scheduler,
        dispatcher,
        weather_clients=weather_clients,
        water_schedules=water_schedules,
        clock=clock,
    )


class TestNextAlignedTime:
    def test_future_anchor_unchanged(self):
        anchor = NOW + DAY
        assert next_aligned_time(anchor, DAY, NOW) == anchor

    def test_past_anchor_resumes_on_phase(self):
        anchor = datetime(2024, 5, 1, 8, tzinfo=UTC)
        assert next_aligned_time(anchor, DAY, NOW) == datetime(2024, 5, 16, 8, tzinfo=UTC)

    def test_boundary_equal_to_now(self):
        anchor = NOW - 3 * DAY
        assert next_aligned_time(anchor, DAY, NOW) == NOW


class TestScheduleWaterAction:
    def test_schedules_on_phase(self, engine, scheduler):
        ws = make_schedule()
        first = engine.schedule_water_action(ws)

        assert first == datetime(2024, 5, 16, 8, tzinfo=UTC)
        assert scheduler.next_run(ws.id) == first
        [job] = scheduler.jobs(ws.id)
        assert job.interval == DAY
        assert job.job_type == "water"

    def test_twice_leaves_one_job(self, engine, scheduler):
        """Rescheduling the same schedule replaces its job."""
        ws = make_schedule()
        engine.schedule_water_action(ws)
        ws.start_time = datetime(2024, 5, 1, 9, 0, tzinfo=UTC)
        engine.schedule_water_action(ws)

        assert len(scheduler.jobs(ws.id)) == 1
        assert scheduler.next_run(ws.id) == datetime(2024, 5, 16, 9, tzinfo=UTC)

    def test_end_dated_removes_job(self, engine, scheduler):
        ws = make_schedule()
        engine.schedule_water_action(ws)
        ws.end_date = NOW - MIN

        assert engine.schedule_water_action(ws) is None
        assert scheduler.next_run(ws.id) is None

    def test_invalid_schedule_rejected(self, engine, scheduler):
        ws = make_schedule(interval=timedelta(0))
        with pytest.raises(ValidationError):
            engine.schedule_water_action(ws)
        assert scheduler.next_run(ws.id) is None

    def test_remove_water_action(self, engine, scheduler):
        ws = make_schedule()
        engine.schedule_water_action(ws)
        assert engine.remove_water_action(ws) == 1
        assert engine.remove_water_action(ws) == 0

    def test_reset_continues_after_failure(self, engine, scheduler):
        good = make_schedule()
        bad = make_schedule(duration=-MIN)
        engine.reset_water_schedules([bad, good])

        assert scheduler.next_run(bad.id) is None
        assert scheduler.next_run(good.id) is not None


class TestEffectiveDuration:
    def test_no_weather_control(self, engine):
        result = engine.compute_effective_duration(make_schedule())
        assert result.duration == 30 * MIN
        assert result.scale_factor == 1.0
        assert result.warnings == []

    def test_temperature_scaling(self, engine):
        """100 degrees against a 90 baseline turns 30m into 35m."""
        ws = make_schedule(weather_control=WeatherControl(temperature=temperature_control()))
        result = engine.compute_effective_duration(ws)
        assert round(result.duration.total_seconds()) == 35 * 60
        assert result.weather.average_high_temperature == 100

    def test_rain_scaling(self, engine):
        """31.75mm of rain turns 30m into 22m30s."""
        ws = make_schedule(weather_control=WeatherControl(rain=rain_control()))
        result = engine.compute_effective_duration(ws)
        assert round(result.duration.total_seconds()) == 22 * 60 + 30
        assert result.weather.rain_mm == pytest.approx(31.75)

    def test_rain_lookback_uses_interval(self, engine, weather_clients):
        ws = make_schedule(interval=2 * DAY, weather_control=WeatherControl(rain=rain_control()))
        data = engine.get_weather_data(ws)
        assert data.rain_mm == pytest.approx(63.5)
        assert data.rain_scale_factor == pytest.approx(0.5)

    def test_combined_scaling(self, engine):
        ws = make_schedule(
            weather_control=WeatherControl(rain=rain_control(), temperature=temperature_control())
        )
        result = engine.compute_effective_duration(ws)
        assert result.scale_factor == pytest.approx(0.75 * 1.16667, rel=1e-4)

    def test_weather_error_waters_unscaled(self, scheduler, dispatcher, weather_clients):
        """A failing weather client costs the adjustment, never the watering."""
        broken = MagicMock(spec=FakeWeatherClient)
        broken.get_average_high_temperature.side_effect = ConnectionError("timeout")
        weather_clients["broken"] = broken
        engine = WaterScheduleEngine(scheduler, dispatcher, weather_clients=weather_clients)
        ws = make_schedule(
            weather_control=WeatherControl(
                rain=rain_control(), temperature=temperature_control("broken")
            )
        )
        result = engine.compute_effective_duration(ws)

        assert round(result.duration.total_seconds()) == 22 * 60 + 30
        assert result.warnings == ["unable to get temperature data: timeout"]
        assert not result.skip

    def test_missing_client_is_warning(self, engine):
        ws = make_schedule(weather_control=WeatherControl(rain=rain_control("nope")))
        result = engine.compute_effective_duration(ws)
        assert result.duration == 30 * MIN
        assert result.warnings == ["unable to get rain data: weather client not found: nope"]


class TestFire:
    def _fire(self, scheduler, ws):
        [job] = scheduler.jobs(ws.id)
        job.action()

    def test_sends_scaled_duration(self, engine, scheduler, dispatcher):
        ws = make_schedule(weather_control=WeatherControl(rain=rain_control()))
        engine.schedule_water_action(ws)
        self._fire(scheduler, ws)

        [call] = dispatcher.send_water_action.call_args_list
        assert call.args[0] == ws.id
        assert round(call.args[1].total_seconds()) == 22 * 60 + 30

    def test_reloads_schedule_from_store(self, engine, scheduler, dispatcher, water_schedules):
        ws = make_schedule()
        water_schedules.set(make_schedule(id=ws.id, duration=10 * MIN))
        engine.schedule_water_action(ws)
        self._fire(scheduler, ws)

        dispatcher.send_water_action.assert_called_once_with(ws.id, 10 * MIN)

    def test_end_dated_at_fire_removes_job(self, engine, scheduler, dispatcher, water_schedules):
        ws = make_schedule()
        engine.schedule_water_action(ws)
        water_schedules.set(make_schedule(id=ws.id, end_date=NOW - MIN))
        self._fire(scheduler, ws)

        dispatcher.send_water_action.assert_not_called()
        assert scheduler.next_run(ws.id) is None

    def test_inactive_period_skips_but_keeps_job(self, engine, scheduler, dispatcher):
        ws = make_schedule(active_period=ActivePeriod("June", "August"))
        engine.schedule_water_action(ws)
        self._fire(scheduler, ws)

        dispatcher.send_water_action.assert_not_called()
        assert scheduler.next_run(ws.id) is not None

    def test_zero_duration_skipped(self, engine, scheduler, dispatcher):
        ws = make_schedule(duration=timedelta(0))
        engine.schedule_water_action(ws)
        self._fire(scheduler, ws)
        dispatcher.send_water_action.assert_not_called()

    def test_dispatch_failure_wrapped(self, engine, scheduler, dispatcher):
        dispatcher.send_water_action.side_effect = OSError("broker down")
        ws = make_schedule()
        engine.schedule_water_action(ws)
        with pytest.raises(DispatchError):
            self._fire(scheduler, ws)


class TestQueries:
    def test_next_water_time(self, engine):
        ws = make_schedule()
        engine.schedule_water_action(ws)
        assert engine.get_next_water_time(ws) == datetime(2024, 5, 16, 8, tzinfo=UTC)

    def test_next_water_time_skips_inactive_months(self, engine):
        ws = make_schedule(active_period=ActivePeriod("June", "August"))
        engine.schedule_water_action(ws)
        assert engine.get_next_water_time(ws) == datetime(2024, 6, 1, 8, tzinfo=UTC)

    def test_next_water_time_unscheduled(self, engine):
        assert engine.get_next_water_time(make_schedule()) is None

    def test_next_active_schedule(self, engine):
        morning = make_schedule()
        evening = make_schedule(start_time=datetime(2024, 5, 1, 20, tzinfo=UTC))
        summer = make_schedule(
            start_time=datetime(2024, 5, 1, 6, tzinfo=UTC),
            active_period=ActivePeriod("June", "August"),
        )
        for ws in (morning, evening, summer):
            engine.schedule_water_action(ws)

        assert engine.get_next_active_water_schedule([morning, evening, summer]) is evening

    def test_next_active_schedule_none(self, engine):
        assert engine.get_next_active_water_schedule([]) is None


class TestStopWatering:
    def test_stop(self, engine, dispatcher):
        engine.stop_watering("g1", stop_all=True)
        dispatcher.send_stop_action.assert_called_once_with("g1", True)

    def test_stop_failure_wrapped(self, engine, dispatcher):
        dispatcher.send_stop_action.side_effect = ConnectionError("down")
        with pytest.raises(DispatchError):
            engine.stop_watering("g1")


class TestZoneFanOut:
    @pytest.fixture
    def zones(self):
        return InMemoryRecordStore()

    @pytest.fixture
    def zone_engine(self, scheduler, dispatcher, water_schedules, zones, clock, metrics_registry):
        return WaterScheduleEngine(
            scheduler,
            dispatcher,
            water_schedules=water_schedules,
            zones=zones,
            clock=clock,
            metrics=SchedulerMetrics(metrics_registry),
        )

    def _fire(self, scheduler, ws):
        [job] = scheduler.jobs(ws.id)
        job.action()

    def _zone(self, zones, ws, position, **kwargs):
        zone = Zone(
            garden_id="g1",
            name=f"Zone {position}",
            position=position,
            water_schedule_ids=[ws.id],
            **kwargs,
        )
        zones.set(zone)
        return zone

    def test_one_action_per_zone(self, zone_engine, scheduler, dispatcher, zones):
        ws = make_schedule()
        first = self._zone(zones, ws, 0)
        second = self._zone(zones, ws, 1)
        zones.set(Zone(garden_id="g1", name="Other", position=2, water_schedule_ids=["elsewhere"]))
        zone_engine.schedule_water_action(ws)
        self._fire(scheduler, ws)

        sent = {call.args for call in dispatcher.send_water_action.call_args_list}
        assert sent == {(first.id, 30 * MIN), (second.id, 30 * MIN)}

    def test_end_dated_zone_not_watered(self, zone_engine, scheduler, dispatcher, zones):
        ws = make_schedule()
        active = self._zone(zones, ws, 0)
        self._zone(zones, ws, 1, end_date=NOW - MIN)
        zone_engine.schedule_water_action(ws)
        self._fire(scheduler, ws)

        dispatcher.send_water_action.assert_called_once_with(active.id, 30 * MIN)

    def test_no_zones_sends_nothing(self, zone_engine, scheduler, dispatcher):
        ws = make_schedule()
        zone_engine.schedule_water_action(ws)
        self._fire(scheduler, ws)
        dispatcher.send_water_action.assert_not_called()

    def test_skip_count_consumed(self, zone_engine, scheduler, dispatcher, zones):
        ws = make_schedule()
        zone = self._zone(zones, ws, 0, skip_count=2)
        zone_engine.schedule_water_action(ws)

        self._fire(scheduler, ws)
        assert zones.get(zone.id).skip_count == 1
        self._fire(scheduler, ws)
        assert zones.get(zone.id).skip_count == 0
        dispatcher.send_water_action.assert_not_called()

        self._fire(scheduler, ws)
        dispatcher.send_water_action.assert_called_once_with(zone.id, 30 * MIN)

    def test_zone_failure_isolated(self, zone_engine, scheduler, dispatcher, zones, metrics_registry):
        ws = make_schedule()
        bad = self._zone(zones, ws, 0)
        good = self._zone(zones, ws, 1)

        def send(resource_id, duration):
            if resource_id == bad.id:
                raise ConnectionError("broker down")

        dispatcher.send_water_action.side_effect = send
        zone_engine.schedule_water_action(ws)
        self._fire(scheduler, ws)

        sent = [call.args[0] for call in dispatcher.send_water_action.call_args_list]
        assert good.id in sent
        errors = metrics_registry.counter("sprout_scheduler_errors")
        assert errors.value(type="zone", id=bad.id) == 1
        assert errors.value(type="zone", id=good.id) == 0

    def test_zones_using_water_schedule(self, zone_engine, zones):
        ws = make_schedule()
        zone = self._zone(zones, ws, 0)
        assert zone_engine.get_zones_using_water_schedule(ws) == [zone]
        assert zone_engine.get_zones_using_water_schedule(make_schedule()) == []
