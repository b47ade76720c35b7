"""Photogate — image content-moderation gate for missing-person and sighting uploads."""

__version__ = "1.0.0"
