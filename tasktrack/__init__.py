"""
TaskTrack — access-controlled task tracking core.
Version: 1.0

Public entry points live in ``tasktrack.services``; everything below them
(store, policy, query engine) is reachable but not meant to be called by
the presentation layer directly.
"""

__version__ = "1.0.0"
__all__ = ["engine", "db", "storage", "tasks", "services"]
