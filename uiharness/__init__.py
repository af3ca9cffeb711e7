"""Snapshot-based UI test orchestration in an isolated desktop environment."""

__version__ = "0.1.0"
