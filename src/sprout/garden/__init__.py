"""Garden domain: records, light and water engines, history, storage."""

from .history import calculate_progress
from .lighting import LightCycleController, derive_light_state
from .models import (
    ActivePeriod,
    Garden,
    LightAction,
    LightSchedule,
    LightState,
    ProgressAnomaly,
    StartTime,
    WaterHistory,
    WaterHistoryProgress,
    WaterSchedule,
    WaterStatus,
    Zone,
)
from .protocols import ActionDispatcher, RecordStore
from .storage import InMemoryRecordStore, StorageClient
from .watering import EffectiveDuration, WaterScheduleEngine, WeatherData

__all__ = [
    "ActionDispatcher",
    "ActivePeriod",
    "EffectiveDuration",
    "Garden",
    "InMemoryRecordStore",
    "LightAction",
    "LightCycleController",
    "LightSchedule",
    "LightState",
    "ProgressAnomaly",
    "RecordStore",
    "StartTime",
    "StorageClient",
    "WaterHistory",
    "WaterHistoryProgress",
    "WaterSchedule",
    "WaterScheduleEngine",
    "WaterStatus",
    "WeatherData",
    "Zone",
    "calculate_progress",
    "derive_light_state",
]
