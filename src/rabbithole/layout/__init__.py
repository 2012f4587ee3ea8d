"""Force-directed and focus-centric layouts."""
