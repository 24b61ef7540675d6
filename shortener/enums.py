"""Shared enums for the URL shortener service.

This module defines all status and state enums used across the codebase.
Using enums instead of string literals provides type safety and prevents typos.
"""

from enum import StrEnum

__all__ = ["CacheBackend", "CacheStatus", "FlushOutcome", "HealthStatus", "RequestStatus"]


class HealthStatus(StrEnum):
    """Health check status values."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class RequestStatus(StrEnum):
    """Request status values for metrics and logging."""

    SUCCESS = "success"
    VALIDATION_ERROR = "validation_error"
    FORBIDDEN = "forbidden"
    ERROR = "error"
    NOT_FOUND = "not_found"


class CacheStatus(StrEnum):
    """Cache status values for metrics."""

    HIT = "true"
    MISS = "false"


class CacheBackend(StrEnum):
    """Concrete cache implementations selectable through ``CACHE_BACKEND``."""

    REDIS = "redis"
    MEMORY = "memory"


class FlushOutcome(StrEnum):
    """Per-code result of a hit flush, used as a metric label."""

    APPLIED = "applied"
    DISCARDED = "discarded"
    RETRY = "retry"
