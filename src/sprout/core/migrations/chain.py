"""
Typed, versioned migration chains for persisted records.

Manifesto:
    Stored gardens and water schedules outlive the code that wrote them.
    Each record carries a schema version; the version is the index of the
    next migration to apply. Upgrading a record is walking the chain from
    its version to the end, checking at every step that the value handed
    over is the type the step was written for.

Architecture:
    ::

        migrations = [None, V1toV2, V2toV3]        # index == source version

        A1(v=1) ──V1toV2──► A2(v=2) ──V2toV3──► A3(v=3)   len == 3, done
          │                    │
          │ wrong type         │ step raised
          ▼                    ▼
        InvalidFromTypeError  MigrationError("V2toV3"/2: <cause>)

        version >= len(migrations) but not the target type
          → MigrationNotFoundError("Unknown"/<version>)

Examples:
    >>> chain = MigrationChain([Migration("InitializeVersion1", init, source=Garden, target=Garden)], Garden)
    >>> garden = chain.run_to_target(stored_garden)

Tags:
    migration, versioning, schema-evolution, records

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator, Sequence
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from sprout.core.errors import (
    InvalidFromTypeError,
    InvalidToTypeError,
    MigrationError,
    MigrationNotFoundError,
)
from sprout.core.logging import get_logger

from .protocol import SupportsSetVersion, Versioned

logger = get_logger(__name__)

T = TypeVar("T")


class Migration:
    """One step that maps a record at version *v* to version *v+1*.

    Args:
        name: Human-readable name used in errors and logs.
        fn: The transformation. It may mutate and return its input or
            return a new object.
        source: Type the step expects as input.
        target: Type the step must return.
    """

    def __init__(
        self,
        name: str,
        fn: Callable[[Any], Any],
        *,
        source: type,
        target: type,
    ) -> None:
        self.name = name
        self.fn = fn
        self.source = source
        self.target = target

    def migrate(self, record: Versioned) -> Versioned:
        version = record.get_version()
        if not isinstance(record, self.source):
            raise InvalidFromTypeError(self.name, version)
        try:
            result = self.fn(record)
        except MigrationError:
            raise
        except Exception as exc:
            raise MigrationError(self.name, version, cause=exc) from exc
        if not isinstance(result, self.target):
            raise InvalidToTypeError(self.name, version)
        return result

    def __repr__(self) -> str:
        return f"Migration({self.name!r}, {self.source.__name__} -> {self.target.__name__})"


@dataclass
class MigrationResult:
    """Outcome of migrating a whole record family."""

    migrated: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return len(self.errors) == 0

    def merge(self, other: MigrationResult) -> MigrationResult:
        return MigrationResult(
            migrated=self.migrated + other.migrated,
            skipped=self.skipped + other.skipped,
            errors={**self.errors, **other.errors},
        )


class MigrationChain(Generic[T]):
    """Ordered migrations for one record family, ending at ``target``.

    ``migrations[v]`` upgrades a record at version ``v``. ``None`` entries
    are placeholders for versions that have no migration (typically index
    0 for a family whose records start at version 1).
    """

    def __init__(self, migrations: Sequence[Migration | None], target: type[T]) -> None:
        self._migrations = list(migrations)
        self.target = target

    def __len__(self) -> int:
        return len(self._migrations)

    @property
    def latest_version(self) -> int:
        return len(self._migrations)

    def run_one(self, record: Versioned) -> Versioned:
        """Apply the single migration registered for the record's version."""
        version = record.get_version()
        if version < 0 or version >= len(self._migrations) or self._migrations[version] is None:
            raise MigrationNotFoundError(version)

        migration = self._migrations[version]
        result = migration.migrate(record)
        if isinstance(result, SupportsSetVersion):
            result.set_version(version + 1)

        logger.debug("migration.applied", migration=migration.name, from_version=version)
        return result

    def run_to_target(self, record: Versioned) -> T:
        """Apply migrations until the record reaches the latest version.

        Raises:
            MigrationNotFoundError: The record is newer than the chain, or the
                chain ends before the value becomes the target type.
            MigrationError: A step failed or did not advance the version.
        """
        current = record
        while current.get_version() < len(self._migrations):
            version = current.get_version()
            current = self.run_one(current)
            if current.get_version() <= version:
                raise MigrationError(
                    self._migrations[version].name,
                    version,
                    "migration did not advance the version",
                )

        if current.get_version() > len(self._migrations) or not isinstance(current, self.target):
            raise MigrationNotFoundError(current.get_version())
        return current

    def each(self, records: Iterable[Versioned]) -> Iterator[tuple[T | None, MigrationError | None]]:
        """Lazily migrate ``records``, yielding ``(migrated, error)`` per record."""
        for record in records:
            try:
                yield self.run_to_target(record), None
            except MigrationError as err:
                yield None, err

    def all(self, records: Iterable[Versioned]) -> list[T]:
        """Migrate every record, stopping at the first error."""
        return [self.run_to_target(record) for record in records]


__all__ = ["Migration", "MigrationChain", "MigrationResult"]
