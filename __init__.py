"""Resiliency policy metrics for request-serving runtimes."""

from resiliency_metrics.auto import init, shutdown
from resiliency_metrics import metrics
from resiliency_metrics.errors import (
    ConfigError,
    ResiliencyMetricsError,
    ViewNotFoundError,
    ViewRegistrationError,
)
from resiliency_metrics.identity import RuntimeIdentity
from resiliency_metrics.metrics import (
    MetricsBackend,
    NoopResiliencyMetrics,
    PolicyType,
    ResiliencyMetrics,
    ResiliencyMetricsRecorder,
    new_resiliency_metrics,
)

# Version exposure
from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("resiliency-metrics")
except PackageNotFoundError:
    __version__ = "0.1.0"  # Fallback version


__all__ = [
    "__version__",
    "init",
    "shutdown",
    "metrics",
    "ConfigError",
    "MetricsBackend",
    "NoopResiliencyMetrics",
    "PolicyType",
    "ResiliencyMetrics",
    "ResiliencyMetricsError",
    "ResiliencyMetricsRecorder",
    "RuntimeIdentity",
    "ViewNotFoundError",
    "ViewRegistrationError",
    "new_resiliency_metrics",
]
