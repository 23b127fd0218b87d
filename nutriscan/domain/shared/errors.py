"""
Domain exceptions.

Typed exceptions for explicit error handling.
Adapters translate the external ones into ProviderFailure values at
their boundary; only programmer errors escape the orchestrator.
"""

from __future__ import annotations

from typing import Optional


# ═══════════════════════════════════════════════════════════
# BASE EXCEPTION
# ═══════════════════════════════════════════════════════════


class DomainError(Exception):
    """
    Base exception for all domain errors.

    All nutriscan exceptions inherit from this.
    """

    pass


# ═══════════════════════════════════════════════════════════
# VALIDATION EXCEPTIONS
# ═══════════════════════════════════════════════════════════


class ValidationError(DomainError):
    """
    Input validation failed.

    Raised when:
    - Confirmed portion is not positive
    - Dish name is empty after normalization
    - Deadline is not positive

    Example:
        >>> raise ValidationError("Confirmed portion must be positive: -50g")
    """

    pass


# ═══════════════════════════════════════════════════════════
# EXTERNAL SERVICE EXCEPTIONS
# ═══════════════════════════════════════════════════════════


class ExternalServiceError(DomainError):
    """
    External service call failed.

    Base class for provider errors raised inside adapters.

    Example:
        >>> raise ExternalServiceError("OpenFoodFacts returned HTTP 502")
    """

    pass


class RateLimitError(ExternalServiceError):
    """
    Provider rate limit exceeded.

    Carries the backoff hint when the provider (or the local limiter)
    supplied one.

    Example:
        >>> raise RateLimitError("USDA quota exhausted", retry_after=30.0)
    """

    def __init__(self, message: str, retry_after: Optional[float] = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class TimeoutError(ExternalServiceError):  # noqa: A001
    """
    Provider call timed out.

    Example:
        >>> raise TimeoutError("Vision model timeout after 20s")
    """

    pass


class ServiceUnavailableError(ExternalServiceError):
    """
    Provider unavailable (HTTP 5xx or circuit breaker open).

    Example:
        >>> raise ServiceUnavailableError("OpenFoodFacts returned HTTP 503")
    """

    pass


class MalformedResponseError(ExternalServiceError):
    """
    Provider answered with data that cannot be parsed.

    Raised when:
    - Body is not JSON
    - JSON does not match the expected shape
    - Unexpected HTTP status

    Example:
        >>> raise MalformedResponseError("USDA payload missing 'foods'")
    """

    pass


# ═══════════════════════════════════════════════════════════
# INFRASTRUCTURE EXCEPTIONS
# ═══════════════════════════════════════════════════════════


class InfrastructureError(DomainError):
    """
    Infrastructure layer error.

    Base class for store, cache and database errors.
    """

    pass


class CacheError(InfrastructureError):
    """
    Response cache operation failed.

    The orchestrator treats it as a cache miss.
    """

    pass


class StoreUnavailableError(InfrastructureError):
    """
    Portion personalization store unavailable.

    The orchestrator treats it as "no history" (identity pass-through).
    """

    pass


class DatabaseError(InfrastructureError):
    """
    Database operation failed.

    Example:
        >>> raise DatabaseError("MongoDB connection lost")
    """

    pass
