"""Measures emitted for resiliency policy usage."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Unit(str, Enum):
    """Units understood by the metrics backend (OpenTelemetry unit strings)."""

    DIMENSIONLESS = "1"


@dataclass(frozen=True)
class Measure:
    """A named countable quantity."""

    name: str
    description: str
    unit: Unit = Unit.DIMENSIONLESS


# Load-count measures
POLICY_LOADED = Measure(
    name="resiliency/loaded",
    description="Number of resiliency policies loaded.",
)

# Execution/transition-count measures
POLICY_EXECUTED = Measure(
    name="resiliency/count",
    description="Number of times a resiliency policy has been executed.",
)
CIRCUIT_BREAKER_OPEN = Measure(
    name="resiliency/circuitbreaker_open/count",
    description="The number of execution attempts in open state.",
)
CIRCUIT_BREAKER_TOO_MANY_REQUESTS = Measure(
    name="resiliency/circuitbreaker_too_many_req/count",
    description=(
        "The number of execution attempts in half-open state and request "
        "count is over maxRequest for cb"
    ),
)

ALL_MEASURES = (
    POLICY_LOADED,
    POLICY_EXECUTED,
    CIRCUIT_BREAKER_OPEN,
    CIRCUIT_BREAKER_TOO_MANY_REQUESTS,
)
