from __future__ import annotations


class ConfigurationError(ValueError):
    """Setup problem detected before the scheduler runs (unknown router, missing link, ...)."""


class SchedulingError(ValueError):
    """A callback was scheduled for an instant that has already elapsed."""
