"""Exception hierarchy for the resiliency metrics package."""

from __future__ import annotations

from typing import Any, Dict, Optional


class ResiliencyMetricsError(Exception):
    """Base error carrying an optional ``details`` mapping for diagnostics."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if not self.details:
            return self.message
        rendered = ", ".join(f"{k}={v!r}" for k, v in self.details.items())
        return f"{self.message} ({rendered})"


class ConfigError(ResiliencyMetricsError):
    """Configuration could not be loaded or is inconsistent."""


class ValidationError(ResiliencyMetricsError):
    """A single configuration section failed validation."""


class InvalidTagError(ResiliencyMetricsError):
    """A tag key or value cannot be attached to a measurement."""


class ViewRegistrationError(ResiliencyMetricsError):
    """The backend rejected a view definition."""


class ViewNotFoundError(ResiliencyMetricsError):
    """No view is registered under the requested name."""


class BackendError(ResiliencyMetricsError):
    """The metrics backend cannot serve the request."""


class ResiliencyError(ResiliencyMetricsError):
    """Base class for errors raised by resiliency policies."""


class CircuitBreakerOpenError(ResiliencyError):
    """Execution rejected because the circuit breaker is open."""


class TooManyRequestsError(ResiliencyError):
    """Execution rejected because the half-open request quota is used up."""
