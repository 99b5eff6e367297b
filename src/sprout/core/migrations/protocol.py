"""Capabilities a record needs to take part in a migration chain."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class Versioned(Protocol):
    """A record that knows which schema version it was written with.

    Tags:
        versioned, migration, protocol
    """

    def get_version(self) -> int: ...


@runtime_checkable
class SupportsSetVersion(Protocol):
    """A record whose version can be stamped after a migration step."""

    def set_version(self, version: int) -> None: ...


__all__ = ["Versioned", "SupportsSetVersion"]
