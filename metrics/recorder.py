"""Resiliency metrics recorder.

``ResiliencyMetricsRecorder`` is constructed once by the hosting runtime and
passed to the policy engine. It drops every measurement until ``init`` has
registered the views and published the application identity; afterwards it
forwards one increment per call to the backend.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import Iterable, Optional, Tuple, Union

from resiliency_metrics.errors import ConfigError
from resiliency_metrics.identity import RuntimeIdentity
from resiliency_metrics.metrics.backend import MetricsBackend
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
    PolicyType,
    with_tags,
)
from resiliency_metrics.metrics.views import View, resiliency_views

logger = logging.getLogger(__name__)


class ResiliencyMetrics(ABC):
    """Recording surface used by the resiliency policy engine.

    Recording methods never raise and never block.
    """

    @property
    @abstractmethod
    def enabled(self) -> bool:
        ...

    @abstractmethod
    def init(self, app_id: str, namespace: str) -> None:
        """Register views and start forwarding measurements."""

    @abstractmethod
    def policy_loaded(self, policy_name: str, namespace: str) -> None:
        """Record that a resiliency policy set finished loading."""

    @abstractmethod
    def policy_executed(self, policy_name: str, policy_type: Union[PolicyType, str]) -> None:
        """Record that one policy of kind ``policy_type`` was applied."""

    @abstractmethod
    def circuit_breaker_open(self, component: str) -> None:
        """Record an execution attempt rejected by an open circuit breaker."""

    @abstractmethod
    def circuit_breaker_half_open_too_many_requests(self, component: str) -> None:
        """Record an execution attempt rejected by a half-open breaker over quota."""


class NoopResiliencyMetrics(ResiliencyMetrics):
    """Drops every measurement. Used when telemetry is turned off."""

    @property
    def enabled(self) -> bool:
        return False

    def init(self, app_id: str, namespace: str) -> None:
        logger.debug("Resiliency metrics disabled; init(%s, %s) ignored", app_id, namespace)

    def policy_loaded(self, policy_name: str, namespace: str) -> None:
        pass

    def policy_executed(self, policy_name: str, policy_type: Union[PolicyType, str]) -> None:
        pass

    def circuit_breaker_open(self, component: str) -> None:
        pass

    def circuit_breaker_half_open_too_many_requests(self, component: str) -> None:
        pass


class ActiveResiliencyMetrics(ResiliencyMetrics):
    """Forwards measurements tagged with a fixed identity to the backend."""

    def __init__(self, backend: MetricsBackend, identity: RuntimeIdentity):
        self._backend = backend
        self._identity = identity

    @property
    def enabled(self) -> bool:
        return True

    @property
    def identity(self) -> RuntimeIdentity:
        return self._identity

    def init(self, app_id: str, namespace: str) -> None:
        """Register the resiliency views; the identity stays the one given at construction."""
        self._backend.register(*resiliency_views())

    def policy_loaded(self, policy_name: str, namespace: str) -> None:
        self._record(
            POLICY_LOADED,
            APP_ID_KEY, self._identity.app_id,
            POLICY_NAME_KEY, policy_name,
            NAMESPACE_KEY, namespace,
        )

    def policy_executed(self, policy_name: str, policy_type: Union[PolicyType, str]) -> None:
        self._record(
            POLICY_EXECUTED,
            APP_ID_KEY, self._identity.app_id,
            POLICY_NAME_KEY, policy_name,
            POLICY_TYPE_KEY, policy_type,
            NAMESPACE_KEY, self._identity.namespace,
        )

    def circuit_breaker_open(self, component: str) -> None:
        self._record(
            CIRCUIT_BREAKER_OPEN,
            APP_ID_KEY, self._identity.app_id,
            COMPONENT_KEY, component,
            NAMESPACE_KEY, self._identity.namespace,
        )

    def circuit_breaker_half_open_too_many_requests(self, component: str) -> None:
        self._record(
            CIRCUIT_BREAKER_TOO_MANY_REQUESTS,
            APP_ID_KEY, self._identity.app_id,
            COMPONENT_KEY, component,
            NAMESPACE_KEY, self._identity.namespace,
        )

    def _record(self, measure: Measure, *pairs) -> None:
        try:
            self._backend.record(measure, 1, with_tags(*pairs))
        except Exception as e:
            # Recording must never fail the instrumented call path.
            logger.debug("Dropped %s measurement: %s", measure.name, e)


class ResiliencyMetricsRecorder(ResiliencyMetrics):
    """
    Process-wide resiliency metrics recorder.

    Starts uninitialized and silently drops measurements. The first
    successful ``init`` publishes the identity and switches to an active
    delegate; the switch is a single reference assignment, so concurrent
    recording calls see either the no-op or the fully built active delegate.
    """

    def __init__(self, backend: Optional[MetricsBackend] = None, views: Optional[Iterable[View]] = None):
        """Initialize the recorder.

        Args:
            backend: Sink for measurements. Defaults to an in-memory backend.
            views: Views registered on ``init``. Defaults to the resiliency views.
        """
        self._backend = backend if backend is not None else MetricsBackend()
        self._views: Tuple[View, ...] = tuple(views) if views is not None else resiliency_views()
        self._init_lock = threading.Lock()
        self._delegate: ResiliencyMetrics = NoopResiliencyMetrics()

    @property
    def backend(self) -> MetricsBackend:
        return self._backend

    @property
    def views(self) -> Tuple[View, ...]:
        return self._views

    @property
    def enabled(self) -> bool:
        return self._delegate.enabled

    @property
    def identity(self) -> Optional[RuntimeIdentity]:
        delegate = self._delegate
        if isinstance(delegate, ActiveResiliencyMetrics):
            return delegate.identity
        return None

    @property
    def app_id(self) -> Optional[str]:
        identity = self.identity
        return identity.app_id if identity else None

    @property
    def namespace(self) -> Optional[str]:
        identity = self.identity
        return identity.namespace if identity else None

    def init(self, app_id: str, namespace: str) -> None:
        """Register the views and start recording.

        Safe to call more than once: views are registered idempotently and the
        identity of the first successful call is kept.

        Raises:
            ConfigError: If ``app_id`` or ``namespace`` is not a string.
            ViewRegistrationError: If the backend rejects a view definition.
        """
        with self._init_lock:
            current = self.identity
            if current is None:
                try:
                    identity = RuntimeIdentity(app_id=app_id, namespace=namespace)
                except ValueError as e:
                    # pydantic.ValidationError subclasses ValueError
                    raise ConfigError(
                        "Invalid resiliency metrics identity",
                        details={"app_id": app_id, "namespace": namespace},
                    ) from e

            self._backend.register(*self._views)

            if current is not None:
                if (current.app_id, current.namespace) != (app_id, namespace):
                    logger.warning(
                        "Resiliency metrics already initialized for app_id=%s namespace=%s; "
                        "ignoring app_id=%s namespace=%s",
                        current.app_id, current.namespace, app_id, namespace,
                    )
                return

            self._delegate = ActiveResiliencyMetrics(self._backend, identity)

        logger.info("Resiliency metrics initialized: app_id=%s namespace=%s", app_id, namespace)

    def policy_loaded(self, policy_name: str, namespace: str) -> None:
        self._delegate.policy_loaded(policy_name, namespace)

    def policy_executed(self, policy_name: str, policy_type: Union[PolicyType, str]) -> None:
        self._delegate.policy_executed(policy_name, policy_type)

    def circuit_breaker_open(self, component: str) -> None:
        self._delegate.circuit_breaker_open(component)

    def circuit_breaker_half_open_too_many_requests(self, component: str) -> None:
        self._delegate.circuit_breaker_half_open_too_many_requests(component)


def new_resiliency_metrics(
    backend: Optional[MetricsBackend] = None,
    enabled: bool = True,
) -> ResiliencyMetrics:
    """Return a recorder, or a no-op when telemetry is turned off."""
    if not enabled:
        return NoopResiliencyMetrics()
    return ResiliencyMetricsRecorder(backend)
