"""eventsync: local-first synchronization engine for challenge events."""

__version__ = "0.1.0"
