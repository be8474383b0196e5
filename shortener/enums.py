"""Shared enums for the URL shortener service.

This module defines all status and state enums used across the codebase.
Using enums instead of string literals provides type safety and prevents typos.
"""

from enum import StrEnum

__all__ = ["HealthStatus", "PipelineState", "StorageBackend", "FlushReason"]


class HealthStatus(StrEnum):
    """Health check status values."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"

    @classmethod
    def from_str(cls, value: str) -> "HealthStatus":
        """Safely parse from string, falling back to UNHEALTHY for unknown values."""
        try:
            return cls(value)
        except ValueError:
            return cls.UNHEALTHY


class PipelineState(StrEnum):
    """Lifecycle states of the deletion pipeline."""

    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


class StorageBackend(StrEnum):
    """Available storage implementations."""

    MEMORY = "memory"
    DATABASE = "database"


class FlushReason(StrEnum):
    """Why the collector handed a batch to the processors."""

    SIZE = "size"
    TICK = "tick"
    SHUTDOWN = "shutdown"
