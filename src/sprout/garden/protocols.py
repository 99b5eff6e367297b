"""
Collaborator contracts consumed by the light and water engines.

The engines never talk to MQTT, HTTP or a database directly. They are
handed objects satisfying these protocols at construction time.

Tags:
    protocols, collaborators, dispatch, storage
"""

from __future__ import annotations

from datetime import timedelta
from typing import Protocol, TypeVar, runtime_checkable

from sprout.garden.models import LightState

R = TypeVar("R")


@runtime_checkable
class ActionDispatcher(Protocol):
    """Publishes commands to garden controllers.

    Implementations raise on publish failure; the engines treat any
    exception as a transient error for that fire.
    """

    def send_water_action(self, resource_id: str, duration: timedelta) -> None: ...

    def send_light_action(
        self, resource_id: str, state: LightState, for_duration: timedelta | None = None
    ) -> None: ...

    def send_stop_action(self, resource_id: str, stop_all: bool = False) -> None: ...


@runtime_checkable
class RecordStore(Protocol[R]):
    """Persistence for one record family (gardens, zones, water schedules)."""

    def get_all(self, include_end_dated: bool = False) -> list[R]: ...

    def get(self, record_id: str) -> R | None: ...

    def set(self, record: R) -> None: ...

    def delete(self, record_id: str) -> None: ...


__all__ = ["ActionDispatcher", "RecordStore"]
