"""Metrics module for OpenTelemetry-based resiliency metrics emission."""

from __future__ import annotations

from .backend import MetricsBackend, Row
from .measures import (
    CIRCUIT_BREAKER_OPEN,
    CIRCUIT_BREAKER_TOO_MANY_REQUESTS,
    POLICY_EXECUTED,
    POLICY_LOADED,
    Measure,
    Unit,
)
from .recorder import (
    ActiveResiliencyMetrics,
    NoopResiliencyMetrics,
    ResiliencyMetrics,
    ResiliencyMetricsRecorder,
    new_resiliency_metrics,
)
from .tags import PolicyType, TagSet, with_tags
from .views import Aggregation, View, new_measure_view, resiliency_views

__all__ = [
    "Aggregation",
    "ActiveResiliencyMetrics",
    "CIRCUIT_BREAKER_OPEN",
    "CIRCUIT_BREAKER_TOO_MANY_REQUESTS",
    "Measure",
    "MetricsBackend",
    "NoopResiliencyMetrics",
    "POLICY_EXECUTED",
    "POLICY_LOADED",
    "PolicyType",
    "ResiliencyMetrics",
    "ResiliencyMetricsRecorder",
    "Row",
    "TagSet",
    "Unit",
    "View",
    "new_measure_view",
    "new_resiliency_metrics",
    "resiliency_views",
    "with_tags",
]
