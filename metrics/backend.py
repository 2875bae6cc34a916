"""OpenTelemetry-backed sink for resiliency measurements.

The backend owns the view table and one OpenTelemetry ``Counter`` per
registered view. Registration is a set-union keyed by view name: registering
an identical view again is a no-op, a conflicting definition is rejected.
Registered views can be queried back through an ``InMemoryMetricReader``.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence, Tuple

from opentelemetry.metrics import Counter, MeterProvider as APIMeterProvider
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import (
    ConsoleMetricExporter,
    InMemoryMetricReader,
    MetricReader,
    PeriodicExportingMetricReader,
)
from opentelemetry.sdk.resources import Resource

from resiliency_metrics.errors import BackendError, ViewNotFoundError, ViewRegistrationError
from resiliency_metrics.metrics.measures import Measure
from resiliency_metrics.metrics.tags import TagSet
from resiliency_metrics.metrics.views import Aggregation, View

if TYPE_CHECKING:
    from resiliency_metrics.config import MetricsConfig
    from resiliency_metrics.identity import RuntimeIdentity

logger = logging.getLogger(__name__)

METER_NAME = "resiliency_metrics"
METER_VERSION = "1.0.0"
DEFAULT_OTLP_METRICS_ENDPOINT = "http://localhost:4318/v1/metrics"


@dataclass
class Row:
    """Aggregated value of one tag combination of a view."""

    tags: Dict[str, str] = field(default_factory=dict)
    count: int = 0


class MetricsBackend:
    """Registers views and aggregates measurements through OpenTelemetry."""

    def __init__(
        self,
        meter_provider: Optional[APIMeterProvider] = None,
        readers: Optional[Sequence[MetricReader]] = None,
        resource: Optional[Resource] = None,
    ):
        """Initialize the backend.

        Args:
            meter_provider: Existing provider to record into. When omitted the
                backend builds and owns an SDK ``MeterProvider``.
            readers: Readers for an owned provider. Defaults to a single
                ``InMemoryMetricReader`` so views can be queried.
            resource: Resource attributes for an owned provider.

        Raises:
            BackendError: If ``readers`` is given together with an existing
                provider; readers can only be attached when a provider is built.
        """
        if meter_provider is not None and readers is not None:
            raise BackendError(
                "Readers cannot be attached to an existing meter provider; "
                "configure them on the provider instead",
                details={"readers": len(readers)},
            )
        self._owns_provider = meter_provider is None
        self._readers: List[MetricReader] = list(readers) if readers is not None else []
        if meter_provider is None:
            if readers is None:
                self._readers.append(InMemoryMetricReader())
            kwargs = {"metric_readers": self._readers}
            if resource is not None:
                kwargs["resource"] = resource
            meter_provider = MeterProvider(**kwargs)
        self._provider = meter_provider
        self._meter = meter_provider.get_meter(METER_NAME, METER_VERSION)

        self._lock = threading.Lock()
        self._views: Dict[str, View] = {}
        self._counters: Dict[str, Counter] = {}
        # measure name -> ((view, counter), ...); replaced wholesale on register
        self._bindings: Dict[str, Tuple[Tuple[View, Counter], ...]] = {}

    @classmethod
    def from_config(
        cls,
        config: "MetricsConfig",
        identity: Optional["RuntimeIdentity"] = None,
    ) -> "MetricsBackend":
        """Build a backend whose readers follow the metrics configuration."""
        readers: List[MetricReader] = []
        if config.enable_in_memory_reader:
            readers.append(InMemoryMetricReader())

        exporter = _build_exporter(config)
        if exporter is not None:
            readers.append(
                PeriodicExportingMetricReader(
                    exporter=exporter,
                    export_interval_millis=config.export_interval_millis,
                )
            )

        resource_attrs = {"service.name": "resiliency-metrics"}
        if identity is not None:
            resource_attrs.update(identity.to_resource_attributes())

        logger.debug(
            "Building metrics backend: exporter=%s, in_memory=%s",
            config.exporter,
            config.enable_in_memory_reader,
        )
        return cls(readers=readers, resource=Resource(attributes=resource_attrs))

    def register(self, *views: View) -> None:
        """Register views; identical re-registration is a no-op.

        Raises:
            ViewRegistrationError: If a view conflicts with one already
                registered (or with another view in the same call). Nothing
                is registered in that case.
        """
        with self._lock:
            pending: Dict[str, View] = {}
            for view in views:
                if view.aggregation is not Aggregation.COUNT:
                    raise ViewRegistrationError(
                        "Unsupported aggregation",
                        details={"view": view.name, "aggregation": view.aggregation},
                    )
                existing = self._views.get(view.name) or pending.get(view.name)
                if existing is None:
                    pending[view.name] = view
                elif existing != view:
                    raise ViewRegistrationError(
                        "A different view with the same name is already registered",
                        details={"view": view.name},
                    )

            if not pending:
                return

            views_table = dict(self._views)
            bindings = {name: list(pairs) for name, pairs in self._bindings.items()}
            for name, view in pending.items():
                counter = self._counters.get(name)
                if counter is None:
                    counter = self._meter.create_counter(
                        name=name,
                        unit=view.measure.unit.value,
                        description=view.description,
                    )
                    self._counters[name] = counter
                views_table[name] = view
                bindings.setdefault(view.measure.name, []).append((view, counter))
                logger.debug("Registered view %s", name)

            self._views = views_table
            self._bindings = {name: tuple(pairs) for name, pairs in bindings.items()}

    def find(self, name: str) -> Optional[View]:
        """Return the registered view with the given name, if any."""
        return self._views.get(name)

    def registered_views(self) -> List[View]:
        return list(self._views.values())

    def record(self, measure: Measure, value: int, tags: TagSet) -> None:
        """Add ``value`` to every view of ``measure``.

        Only the view's own tag keys are kept. Measurements of a measure
        without registered views are dropped.
        """
        for view, counter in self._bindings.get(measure.name, ()):
            counter.add(value, attributes=tags.select(view.tag_keys))

    def retrieve_data(self, view_name: str) -> List[Row]:
        """Return the aggregated rows of a registered view.

        Raises:
            ViewNotFoundError: If no view is registered under ``view_name``.
            BackendError: If the backend has no in-memory reader to query.
        """
        if view_name not in self._views:
            raise ViewNotFoundError("View is not registered", details={"view": view_name})

        reader = next((r for r in self._readers if isinstance(r, InMemoryMetricReader)), None)
        if reader is None:
            raise BackendError(
                "Backend has no queryable reader; enable the in-memory reader",
                details={"view": view_name},
            )

        rows: List[Row] = []
        data = reader.get_metrics_data()
        if data is None:
            return rows
        for resource_metrics in data.resource_metrics:
            for scope_metrics in resource_metrics.scope_metrics:
                if scope_metrics.scope.name != METER_NAME:
                    continue
                for metric in scope_metrics.metrics:
                    if metric.name != view_name:
                        continue
                    for point in metric.data.data_points:
                        rows.append(Row(tags=dict(point.attributes or {}), count=int(point.value)))
        return rows

    def force_flush(self, timeout_millis: int = 10_000) -> bool:
        if not self._owns_provider:
            return True
        return self._provider.force_flush(timeout_millis=timeout_millis)

    def shutdown(self) -> None:
        """Shut down the owned provider, flushing periodic exporters."""
        if self._owns_provider:
            self._provider.shutdown()


def _build_exporter(config: "MetricsConfig"):
    if config.exporter == "otlp":
        from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter

        headers = {}
        if config.api_key:
            headers["Authorization"] = f"Bearer {config.api_key}"
        return OTLPMetricExporter(
            endpoint=config.metrics_endpoint or DEFAULT_OTLP_METRICS_ENDPOINT,
            headers=headers,
        )
    if config.exporter == "console":
        return ConsoleMetricExporter()
    if config.exporter == "file":
        from resiliency_metrics.exporter import FileMetricExporter

        return FileMetricExporter(
            file_path=config.file_exporter_path,
            reset_on_start=config.reset_metrics_file,
        )
    return None
