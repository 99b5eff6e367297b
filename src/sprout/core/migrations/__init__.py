"""Versioned record migrations."""

from .chain import Migration, MigrationChain, MigrationResult
from .protocol import SupportsSetVersion, Versioned

__all__ = [
    "Migration",
    "MigrationChain",
    "MigrationResult",
    "SupportsSetVersion",
    "Versioned",
]
