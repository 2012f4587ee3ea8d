"""Scoring, centrality and community analytics."""
