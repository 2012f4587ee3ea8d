"""Rabbit Hole graph core: identity resolution, scoring, layout and sync."""

__version__ = "0.1.0"
