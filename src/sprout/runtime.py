"""
Explicit construction of the scheduling engine.

There is no process-global scheduler: ``create_runtime`` builds one
``JobScheduler`` and hands it to the light and water engines, and the
caller owns the resulting ``Runtime``'s lifecycle.

Usage:
    runtime = create_runtime(dispatcher, storage=storage, weather_clients=clients)
    runtime.start()     # migrate, start scheduler, schedule every record
    ...
    runtime.stop()
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta

from sprout.core.cache import InMemoryCache
from sprout.core.errors import SproutError
from sprout.core.logging import configure_from_settings, get_logger
from sprout.core.migrations import MigrationResult
from sprout.core.scheduling import JobScheduler
from sprout.core.settings import SproutSettings, get_settings
from sprout.core.timestamps import utc_now
from sprout.garden.history import calculate_progress
from sprout.garden.lighting import LightCycleController
from sprout.garden.models import WaterHistory, WaterHistoryProgress
from sprout.garden.protocols import ActionDispatcher
from sprout.garden.storage import StorageClient
from sprout.garden.watering import WaterScheduleEngine
from sprout.garden.weather.client import CachingWeatherClient, WeatherClient
from sprout.observability.metrics import MetricsRegistry, SchedulerMetrics, WeatherMetrics

logger = get_logger(__name__)


@dataclass
class Runtime:
    settings: SproutSettings
    scheduler: JobScheduler
    storage: StorageClient
    lights: LightCycleController
    water: WaterScheduleEngine

    def start(self) -> MigrationResult | None:
        """Migrate stored records, start the scheduler and schedule every record."""
        migrations = None
        if self.settings.run_migrations_on_startup:
            migrations = self.storage.run_migrations()

        self.scheduler.start()

        for garden in self.storage.gardens.get_all():
            if not garden.has_light_schedule():
                continue
            try:
                self.lights.schedule_light_actions(garden)
            except SproutError as err:
                logger.error("runtime.light_schedule_failed", garden_id=garden.id, **err.to_dict())

        self.water.reset_water_schedules(self.storage.water_schedules.get_all())
        logger.info("runtime.started", jobs=len(self.scheduler))
        return migrations

    def stop(self) -> None:
        self.scheduler.stop()

    def water_progress(
        self, history: Sequence[WaterHistory], now: datetime | None = None
    ) -> WaterHistoryProgress:
        """Progress of the current watering using the configured completion cutoff."""
        cutoff = timedelta(minutes=self.settings.history_completed_cutoff_minutes)
        return calculate_progress(history, now, completed_cutoff=cutoff)


def create_runtime(
    dispatcher: ActionDispatcher,
    *,
    settings: SproutSettings | None = None,
    storage: StorageClient | None = None,
    weather_clients: Mapping[str, WeatherClient] | None = None,
    clock: Callable[[], datetime] = utc_now,
    metrics_registry: MetricsRegistry | None = None,
    configure_logs: bool = False,
) -> Runtime:
    """Wire scheduler, engines and weather clients from ``settings``."""
    settings = settings or get_settings()
    if configure_logs:
        configure_from_settings(settings)

    storage = storage or StorageClient()
    cache = InMemoryCache(
        max_size=settings.weather_cache_max_entries,
        default_ttl_seconds=settings.weather_cache_ttl_seconds,
    )
    weather_metrics = WeatherMetrics(metrics_registry)
    clients: dict[str, WeatherClient] = {}
    for client_id, client in (weather_clients or {}).items():
        if not isinstance(client, CachingWeatherClient):
            client = CachingWeatherClient(client_id, client, cache=cache, metrics=weather_metrics)
        clients[client_id] = client

    scheduler_metrics = SchedulerMetrics(metrics_registry)
    scheduler = JobScheduler.from_settings(settings, clock=clock, metrics=scheduler_metrics)
    lights = LightCycleController(scheduler, dispatcher, gardens=storage.gardens, clock=clock)
    water = WaterScheduleEngine(
        scheduler,
        dispatcher,
        weather_clients=clients,
        water_schedules=storage.water_schedules,
        zones=storage.zones,
        clock=clock,
        metrics=scheduler_metrics,
    )
    return Runtime(settings=settings, scheduler=scheduler, storage=storage, lights=lights, water=water)


__all__ = ["Runtime", "create_runtime"]
