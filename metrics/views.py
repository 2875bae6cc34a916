"""View definitions binding measures to tag dimensions."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Tuple

from resiliency_metrics.metrics.measures import (
    CIRCUIT_BREAKER_OPEN,
    CIRCUIT_BREAKER_TOO_MANY_REQUESTS,
    POLICY_EXECUTED,
    POLICY_LOADED,
    Measure,
)
from resiliency_metrics.metrics.tags import (
    APP_ID_KEY,
    COMPONENT_KEY,
    NAMESPACE_KEY,
    POLICY_NAME_KEY,
    POLICY_TYPE_KEY,
)


class Aggregation(str, Enum):
    """How the backend accumulates measurements of a view."""

    COUNT = "count"


@dataclass(frozen=True)
class View:
    """A measure bound to an ordered tuple of tag keys and an aggregation."""

    name: str
    measure: Measure
    tag_keys: Tuple[str, ...]
    aggregation: Aggregation = Aggregation.COUNT

    @property
    def description(self) -> str:
        return self.measure.description


def new_measure_view(
    measure: Measure,
    tag_keys: Iterable[str],
    aggregation: Aggregation = Aggregation.COUNT,
) -> View:
    """Create a view named after its measure."""
    return View(
        name=measure.name,
        measure=measure,
        tag_keys=tuple(tag_keys),
        aggregation=aggregation,
    )


def resiliency_views() -> Tuple[View, ...]:
    """Return the views owned by the resiliency recorder."""
    cb_keys = (APP_ID_KEY, COMPONENT_KEY, NAMESPACE_KEY)
    return (
        new_measure_view(POLICY_LOADED, (APP_ID_KEY, POLICY_NAME_KEY, NAMESPACE_KEY)),
        new_measure_view(
            POLICY_EXECUTED,
            (APP_ID_KEY, POLICY_NAME_KEY, POLICY_TYPE_KEY, NAMESPACE_KEY),
        ),
        new_measure_view(CIRCUIT_BREAKER_OPEN, cb_keys),
        new_measure_view(CIRCUIT_BREAKER_TOO_MANY_REQUESTS, cb_keys),
    )
