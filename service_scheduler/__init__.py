"""Service appointment scheduling: availability, slot search and conflict-safe booking."""

__version__ = "1.0.0"
