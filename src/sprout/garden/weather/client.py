"""Weather data clients.

Weather sources (Netatmo stations, forecast APIs, the fake client used in
staging) only need to answer two questions about a look-back window. The
``CachingWeatherClient`` wrapper keeps answers for a few minutes because
every water schedule sharing a station asks the same questions at roughly
the same time.
"""

from __future__ import annotations

import time
from datetime import timedelta
from typing import Protocol, runtime_checkable

from sprout.core.cache import InMemoryCache
from sprout.core.errors import SproutError, WeatherDataError
from sprout.core.logging import get_logger
from sprout.observability.metrics import WeatherMetrics

logger = get_logger(__name__)

DEFAULT_CACHE_TTL_SECONDS = 300


@runtime_checkable
class WeatherClient(Protocol):
    """Source of weather measurements.

    Tags:
        weather, protocol, collaborator
    """

    def get_total_rain(self, since: timedelta) -> float:
        """Total rain in millimeters over the window ending now."""
        ...

    def get_average_high_temperature(self, since: timedelta) -> float:
        """Average daily high temperature over the window ending now."""
        ...


class CachingWeatherClient:
    """Wraps a ``WeatherClient`` with a TTL response cache and metrics.

    Errors from the wrapped client are re-raised as ``WeatherDataError``
    tagged with the client id. Failed lookups are not cached.
    """

    def __init__(
        self,
        client_id: str,
        client: WeatherClient,
        *,
        cache: InMemoryCache | None = None,
        metrics: WeatherMetrics | None = None,
    ) -> None:
        self.client_id = client_id
        self._client = client
        self._cache = cache or InMemoryCache(max_size=1000, default_ttl_seconds=DEFAULT_CACHE_TTL_SECONDS)
        self._metrics = metrics or WeatherMetrics()

    def get_total_rain(self, since: timedelta) -> float:
        return self._lookup("get_total_rain", "total_rain", since)

    def get_average_high_temperature(self, since: timedelta) -> float:
        return self._lookup("get_average_high_temperature", "avg_temp", since)

    def _lookup(self, method: str, key_prefix: str, since: timedelta) -> float:
        started = time.perf_counter()
        cache_key = f"{key_prefix}_{int(since.total_seconds())}_{self.client_id}"

        cached = self._cache.get(cache_key)
        if cached is not None:
            self._metrics.record(method, True, time.perf_counter() - started)
            return cached

        try:
            value = getattr(self._client, method)(since)
        except SproutError as err:
            raise err.with_context(client_id=self.client_id)
        except Exception as exc:
            raise WeatherDataError(
                f"{method} failed for weather client {self.client_id}: {exc}", cause=exc
            ).with_context(client_id=self.client_id) from exc
        finally:
            self._metrics.record(method, False, time.perf_counter() - started)

        self._cache.set(cache_key, value)
        logger.debug("weather.fetched", client_id=self.client_id, method=method, value=value)
        return value


__all__ = ["WeatherClient", "CachingWeatherClient", "DEFAULT_CACHE_TTL_SECONDS"]
