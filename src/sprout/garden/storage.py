"""
Record storage and record-family migrations.

Persistent backends (files, key-value stores, config maps) live outside the
engine; ``InMemoryRecordStore`` implements the same ``RecordStore`` contract
for tests and single-process use. ``StorageClient`` groups the three record
families and upgrades stored records to their latest schema version.

Migration lists (index == version the record is at):

    gardens           [InitializeVersion1]
    zones             [InitializeVersion1]
    water schedules   [InitializeVersion1]

Tags:
    storage, records, migrations
"""

from __future__ import annotations

import threading
from typing import Generic, TypeVar

from sprout.core.errors import MigrationError, MigrationNotFoundError
from sprout.core.logging import get_logger
from sprout.core.migrations import Migration, MigrationChain, MigrationResult
from sprout.core.timestamps import utc_now
from sprout.garden.models import Garden, WaterSchedule, Zone
from sprout.garden.protocols import RecordStore

logger = get_logger(__name__)

R = TypeVar("R", Garden, Zone, WaterSchedule)


class InMemoryRecordStore(Generic[R]):
    """Thread-safe dict-backed store keyed by record id."""

    def __init__(self, records: list[R] | None = None) -> None:
        self._lock = threading.Lock()
        self._records: dict[str, R] = {}
        for record in records or []:
            self._records[record.id] = record

    def get_all(self, include_end_dated: bool = False) -> list[R]:
        now = utc_now()
        with self._lock:
            records = list(self._records.values())
        if include_end_dated:
            return records
        return [record for record in records if not record.end_dated(now)]

    def get(self, record_id: str) -> R | None:
        with self._lock:
            return self._records.get(record_id)

    def set(self, record: R) -> None:
        with self._lock:
            self._records[record.id] = record

    def delete(self, record_id: str) -> None:
        with self._lock:
            self._records.pop(record_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


def _initialize_version_1(record: R) -> R:
    """Records written before versioning start at version 0; nothing changes but the stamp."""
    return record


garden_migrations = MigrationChain(
    [Migration("InitializeVersion1", _initialize_version_1, source=Garden, target=Garden)],
    Garden,
)

zone_migrations = MigrationChain(
    [Migration("InitializeVersion1", _initialize_version_1, source=Zone, target=Zone)],
    Zone,
)

water_schedule_migrations = MigrationChain(
    [
        Migration(
            "InitializeVersion1",
            _initialize_version_1,
            source=WaterSchedule,
            target=WaterSchedule,
        )
    ],
    WaterSchedule,
)


class StorageClient:
    """The three record families the engine works with."""

    def __init__(
        self,
        gardens: RecordStore[Garden] | None = None,
        zones: RecordStore[Zone] | None = None,
        water_schedules: RecordStore[WaterSchedule] | None = None,
    ) -> None:
        self.gardens = gardens if gardens is not None else InMemoryRecordStore()
        self.zones = zones if zones is not None else InMemoryRecordStore()
        self.water_schedules = (
            water_schedules if water_schedules is not None else InMemoryRecordStore()
        )

    def run_migrations(self) -> MigrationResult:
        """Upgrade every stored record to its family's latest version.

        Records already at (or beyond) the latest version are skipped. A
        failing record is reported in the result and left as stored; the
        remaining records are still migrated.
        """
        result = MigrationResult()
        for family, store, chain in (
            ("garden", self.gardens, garden_migrations),
            ("zone", self.zones, zone_migrations),
            ("water_schedule", self.water_schedules, water_schedule_migrations),
        ):
            result = result.merge(_migrate_family(family, store, chain))

        logger.info(
            "migration.completed",
            migrated=len(result.migrated),
            skipped=len(result.skipped),
            failed=len(result.errors),
        )
        return result


def _migrate_family(family: str, store: RecordStore, chain: MigrationChain) -> MigrationResult:
    result = MigrationResult()
    for record in store.get_all(include_end_dated=True):
        record_key = f"{family}:{record.id}"
        if record.get_version() >= chain.latest_version:
            result.skipped.append(record_key)
            continue
        try:
            migrated = chain.run_to_target(record)
        except MigrationNotFoundError:
            result.skipped.append(record_key)
            continue
        except MigrationError as err:
            result.errors[record_key] = str(err)
            logger.error("migration.failed", record=record_key, **err.to_dict())
            continue

        store.set(migrated)
        result.migrated.append(record_key)
        logger.info("migration.applied", record=record_key, version=migrated.get_version())
    return result


__all__ = [
    "InMemoryRecordStore",
    "StorageClient",
    "garden_migrations",
    "water_schedule_migrations",
    "zone_migrations",
]
