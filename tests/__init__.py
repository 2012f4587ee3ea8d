"""Test suite for the Rabbit Hole graph core.

Unit tests cover identity resolution, scoring, centrality, communities,
layout and the sync layer; integration tests drive a ``GraphStore``
through the write queue into a recording remote store. Run ``pytest``
from the project root.
"""
