"""Shared enums for the short-link engine.

This module defines all status and state enums used across the codebase.
Using enums instead of string literals provides type safety and prevents typos.
"""

from enum import StrEnum

__all__ = ["HealthStatus", "RequestStatus", "CacheStatus", "InsertOutcome"]


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


class RequestStatus(StrEnum):
    """Request status values for metrics and logging."""

    SUCCESS = "success"
    VALIDATION_ERROR = "validation_error"
    EXHAUSTED = "exhausted"
    UNAVAILABLE = "unavailable"
    NOT_FOUND = "not_found"
    ERROR = "error"

    @classmethod
    def from_str(cls, value: str) -> "RequestStatus":
        """Safely parse from string, falling back to ERROR for unknown values."""
        try:
            return cls(value)
        except ValueError:
            return cls.ERROR


class CacheStatus(StrEnum):
    """Cache status values for metrics."""

    HIT = "true"
    MISS = "false"


class InsertOutcome(StrEnum):
    """Result of a conditional insert into the mapping store."""

    INSERTED = "inserted"
    ALREADY_EXISTS = "already_exists"
