"""sprout - scheduling, adaptive watering and event reconciliation for garden controllers."""

__version__ = "0.1.0"
