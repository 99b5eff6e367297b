"""Weather scaling configuration and weather data clients."""

from .client import CachingWeatherClient, WeatherClient
from .control import ScaleControl, WeatherControl
from .fake import FakeWeatherClient

__all__ = [
    "CachingWeatherClient",
    "FakeWeatherClient",
    "ScaleControl",
    "WeatherClient",
    "WeatherControl",
]
