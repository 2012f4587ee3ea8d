"""Integration test package.

These tests drive a ``GraphStore`` end to end: mutations flow through the
write queue into a recording remote store, and snapshots restore state.
No network access is needed.
"""
