"""Client-side orchestrator for a personal cloud file vault."""

__version__ = "0.1.0"
