"""Proximity-privacy engine: fuzzed nearby lists and crossed-paths alerts."""

__version__ = "0.1.0"
