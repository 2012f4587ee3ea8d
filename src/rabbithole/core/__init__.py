"""Core data models and helpers."""
