"""In-memory graph state and queries."""
