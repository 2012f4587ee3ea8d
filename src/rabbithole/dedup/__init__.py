"""Identity resolution and duplicate detection."""
