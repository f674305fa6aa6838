"""Proximity core: geo math, fuzzing, freshness, and crossed-paths detection."""
