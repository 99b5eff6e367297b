"""Domain-agnostic infrastructure: errors, logging, settings, scheduling, migrations."""
